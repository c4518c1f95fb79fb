import logging
import secrets
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from bikawo.infra.logging import update_log_context
from bikawo.settings import settings

logger = logging.getLogger(__name__)

security = HTTPBasic(auto_error=False)


class AdminAuthException(HTTPException):
    def __init__(self, *, reason: str) -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication",
            headers={"WWW-Authenticate": "Basic"},
        )
        self.reason = reason


@dataclass(frozen=True)
class AdminIdentity:
    username: str
    auth_method: str = "basic"


def _check_credentials(credentials: HTTPBasicCredentials | None) -> AdminIdentity:
    expected_user = settings.admin_basic_username
    expected_password = settings.admin_basic_password
    if not expected_user or not expected_password:
        raise AdminAuthException(reason="unconfigured_credentials")
    if credentials is None:
        raise AdminAuthException(reason="missing_credentials")
    user_ok = secrets.compare_digest(credentials.username.encode(), expected_user.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), expected_password.encode())
    if not (user_ok and password_ok):
        raise AdminAuthException(reason="invalid_credentials")
    return AdminIdentity(username=credentials.username)


async def require_admin(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(security),
) -> AdminIdentity:
    """Gate for the refund reconciliation routes."""
    try:
        identity = _check_credentials(credentials)
    except AdminAuthException as exc:
        logger.warning(
            "admin_auth_failed",
            extra={
                "extra": {
                    "reason": exc.reason,
                    "path": request.url.path,
                    "method": request.method,
                    "presented_username": credentials.username if credentials else None,
                }
            },
        )
        raise
    request.state.admin_identity = identity
    update_log_context(role="admin", admin=identity.username)
    return identity
