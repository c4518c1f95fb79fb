from typing import Any

from fastapi import Request

from bikawo.domain.refunds.policy import RefundPolicy, policy_from_settings
from bikawo.infra import stripe_client as stripe_infra
from bikawo.infra.db import get_db_session  # noqa: F401
from bikawo.infra.email import resolve_app_email_adapter
from bikawo.services import resolve_services
from bikawo.settings import settings


def get_app_settings(request: Request):
    return getattr(request.app.state, "app_settings", None) or settings


def get_refund_policy(request: Request) -> RefundPolicy:
    policy = getattr(request.app.state, "refund_policy", None)
    if policy is not None:
        return policy
    services = resolve_services(request.app)
    if services is not None:
        return services.refund_policy
    return policy_from_settings(get_app_settings(request))


def get_stripe_client(request: Request) -> Any:
    return stripe_infra.resolve_client(request.app.state)


def get_email_adapter(request: Request) -> Any:
    return resolve_app_email_adapter(request.app)
