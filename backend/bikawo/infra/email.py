"""Transactional email for booking cancellations and refund alerts.

``EMAIL_MODE`` picks the transport: ``sendgrid`` posts to the SendGrid v3
API, ``smtp`` relays through an SMTP server, ``off`` drops messages. Every
send goes through a circuit breaker; callers decide whether a failure is
fatal (notification helpers log and carry on).
"""

import logging
import random
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any

import anyio
import httpx

from bikawo.infra.metrics import metrics
from bikawo.settings import settings
from bikawo.shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


def _sender_address() -> str:
    sender = settings.email_sender
    if not sender:
        raise RuntimeError("email_sender_not_configured")
    return sender


def build_sendgrid_payload(
    recipient: str, subject: str, body: str, headers: dict[str, str] | None = None
) -> dict[str, Any]:
    sender: dict[str, str] = {"email": _sender_address()}
    if settings.email_from_name:
        sender["name"] = settings.email_from_name
    payload: dict[str, Any] = {
        "personalizations": [{"to": [{"email": recipient}]}],
        "from": sender,
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    if headers:
        payload["headers"] = dict(headers)
    return payload


def build_smtp_message(
    recipient: str, subject: str, body: str, headers: dict[str, str] | None = None
) -> EmailMessage:
    sender = _sender_address()
    message = EmailMessage()
    message["From"] = formataddr((settings.email_from_name, sender)) if settings.email_from_name else sender
    message["To"] = recipient
    message["Subject"] = subject
    for name, value in (headers or {}).items():
        message[name] = value
    message.set_content(body)
    return message


async def _post_sendgrid(client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
    """POST with jittered exponential backoff on 429, 5xx and connection trouble."""
    attempts = max(1, settings.email_http_max_attempts)
    for attempt in range(1, attempts + 1):
        last_attempt = attempt == attempts
        try:
            response = await client.post(
                SENDGRID_URL,
                headers={"Authorization": f"Bearer {settings.sendgrid_api_key}"},
                json=payload,
                timeout=settings.email_timeout_seconds,
            )
        except (httpx.TimeoutException, httpx.ConnectError):
            if last_attempt:
                raise
        else:
            if last_attempt or not (response.status_code == 429 or response.status_code >= 500):
                return response
        delay = min(
            settings.email_http_backoff_seconds * 2 ** (attempt - 1),
            settings.email_http_backoff_max_seconds,
        )
        await anyio.sleep(delay * (1 + random.uniform(0.0, 0.3)))
    raise RuntimeError("email_http_retry_exhausted")  # pragma: no cover


class NoopEmailAdapter:
    async def send_email(
        self, recipient: str, subject: str, body: str, *, headers: dict[str, str] | None = None
    ) -> bool:
        logger.info("email_send_skipped", extra={"extra": {"recipient": recipient, "subject": subject}})
        metrics.record_email_adapter("skipped")
        return False


class EmailAdapter:
    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self.http_client = http_client
        self._breaker = CircuitBreaker(
            name="email",
            failure_threshold=settings.email_circuit_failure_threshold,
            recovery_time=settings.email_circuit_recovery_seconds,
        )

    async def send_email(
        self, recipient: str, subject: str, body: str, *, headers: dict[str, str] | None = None
    ) -> bool:
        """Return True once the transport accepted the message, False when skipped."""
        if settings.email_mode == "off" or not recipient:
            metrics.record_email_adapter("skipped")
            return False
        try:
            await self._breaker.call(self._deliver, recipient, subject, body, headers)
        except CircuitBreakerOpenError:
            logger.warning("email_circuit_open", extra={"extra": {"subject": subject}})
            metrics.record_email_adapter("circuit_open")
            return False
        except Exception:
            metrics.record_email_adapter("error")
            raise
        metrics.record_email_adapter("sent")
        return True

    async def _deliver(
        self, recipient: str, subject: str, body: str, headers: dict[str, str] | None
    ) -> None:
        if settings.email_mode == "sendgrid":
            await self._deliver_sendgrid(build_sendgrid_payload(recipient, subject, body, headers))
        elif settings.email_mode == "smtp":
            await self._deliver_smtp(build_smtp_message(recipient, subject, body, headers))
        else:
            raise RuntimeError("unsupported_email_mode")

    async def _deliver_sendgrid(self, payload: dict[str, Any]) -> None:
        if not settings.sendgrid_api_key:
            raise RuntimeError("sendgrid_not_configured")
        if self.http_client is not None:
            response = await _post_sendgrid(self.http_client, payload)
        else:
            async with httpx.AsyncClient() as client:
                response = await _post_sendgrid(client, payload)
        if response.status_code >= 400:
            raise RuntimeError(f"sendgrid_status_{response.status_code}")

    async def _deliver_smtp(self, message: EmailMessage) -> None:
        host = settings.smtp_host
        if not host:
            raise RuntimeError("smtp_not_configured")
        port = settings.smtp_port or 587

        def _send() -> None:
            smtp_cls = smtplib.SMTP if settings.smtp_use_tls else smtplib.SMTP_SSL
            with smtp_cls(host, port, timeout=settings.smtp_timeout_seconds) as smtp:
                if settings.smtp_use_tls:
                    smtp.starttls()
                if settings.smtp_username and settings.smtp_password:
                    smtp.login(settings.smtp_username, settings.smtp_password)
                smtp.send_message(message)

        await anyio.to_thread.run_sync(_send)


def resolve_email_adapter(app_settings) -> EmailAdapter | NoopEmailAdapter:
    if app_settings.email_mode == "off" or getattr(app_settings, "testing", False):
        return NoopEmailAdapter()
    return EmailAdapter()


def resolve_app_email_adapter(app_like) -> Any:
    state = getattr(app_like, "state", app_like)
    adapter = getattr(state, "email_adapter", None)
    if adapter is None:
        adapter = getattr(getattr(state, "services", None), "email_adapter", None)
    return adapter or NoopEmailAdapter()
