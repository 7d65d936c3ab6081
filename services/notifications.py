from typing import Protocol
from config import config
from services.errors import NotificationError
import logging
import requests

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, subject: str, body: str, recipients: list[str]) -> None: ...


class LoggingNotifier:
    """Used when no delivery channel is configured: the message only goes to the log."""

    def notify(self, subject: str, body: str, recipients: list[str]) -> None:
        logger.info("notification to %s: %s - %s", recipients, subject, body)


class WebhookNotifier:
    """Posts notifications as JSON to a delivery webhook (email/chat relay)."""

    def __init__(self, url: str, timeout: float = 10.0, session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, subject: str, body: str, recipients: list[str]) -> None:
        payload = {"subject": subject, "body": body, "recipients": recipients}
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"notification webhook failed: {e}") from e
        logger.debug("notification '%s' delivered to %d recipients", subject, len(recipients))


def get_notifier() -> Notifier:
    if config.notification_webhook_url:
        return WebhookNotifier(config.notification_webhook_url, timeout=config.http_timeout_seconds)
    return LoggingNotifier()
