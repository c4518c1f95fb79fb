import secrets

from fastapi import APIRouter, HTTPException, Request, Response

router = APIRouter()


def _bearer_token(request: Request) -> str | None:
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not credentials:
        return None
    return credentials.strip()


def _check_scrape_access(request: Request) -> None:
    """Prod scrapes always need the bearer token; elsewhere only once one is set."""
    app_settings = getattr(request.app.state, "app_settings", None)
    if app_settings is None:
        return
    expected = app_settings.metrics_token
    if not expected and app_settings.app_env != "prod":
        return
    if not expected:
        raise HTTPException(status_code=500, detail="Metrics token misconfigured")
    provided = _bearer_token(request)
    if provided is None or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/metrics")
async def metrics_endpoint(request: Request) -> Response:
    metrics_client = getattr(request.app.state, "metrics", None)
    if not getattr(metrics_client, "enabled", False):
        raise HTTPException(status_code=404, detail="Metrics disabled")
    _check_scrape_access(request)
    body, content_type = metrics_client.render()
    return Response(content=body, media_type=content_type)
