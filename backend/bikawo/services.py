from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from bikawo.domain.refunds.policy import RefundPolicy, policy_from_settings
from bikawo.infra.email import EmailAdapter, NoopEmailAdapter, resolve_email_adapter
from bikawo.infra.metrics import Metrics, configure_metrics
from bikawo.infra.stripe_client import StripeClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppServices:
    """Collaborators the cancellation and refund routes need, built once per app."""

    email_adapter: EmailAdapter | NoopEmailAdapter
    stripe_client: StripeClient
    metrics: Metrics
    refund_policy: RefundPolicy


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    services = AppServices(
        email_adapter=resolve_email_adapter(app_settings),
        stripe_client=StripeClient(secret_key=app_settings.stripe_secret_key),
        metrics=metrics or configure_metrics(app_settings.metrics_enabled),
        refund_policy=policy_from_settings(app_settings),
    )
    if not app_settings.stripe_secret_key:
        logger.warning("stripe_key_missing", extra={"extra": {"effect": "refunds_will_fail"}})
    return services


def resolve_services(app_like: Any) -> AppServices | None:
    if app_like is None or isinstance(app_like, AppServices):
        return app_like
    state = getattr(app_like, "state", app_like)
    return getattr(state, "services", None)
