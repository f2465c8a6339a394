from __future__ import annotations

from typing import Any, Protocol

import httpx

from .config import MailerConfig
from .models import ReminderMessage, SendResult, Sent, TransientFailure


class ReminderSender(Protocol):
    def send(self, message: ReminderMessage, to_email: str, to_name: str) -> SendResult: ...


class MailerSendClient:
    """Reminder sender backed by the MailerSend email API.

    Every failure (transport error, rejected address, rate limit, outage) comes
    back as ``TransientFailure`` so the queue's retry policy decides what happens.
    """

    def __init__(
        self,
        config: MailerConfig,
        api_key: str,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.client = httpx.Client(
            timeout=config.timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def build_payload(self, message: ReminderMessage, to_email: str, to_name: str) -> dict[str, Any]:
        return {
            "from": {"email": self.config.from_email, "name": self.config.from_name},
            "to": [{"email": to_email, "name": to_name}],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }

    def send(self, message: ReminderMessage, to_email: str, to_name: str) -> SendResult:
        payload = self.build_payload(message, to_email, to_name)
        try:
            response = self.client.post(self.config.api_url, json=payload)
        except httpx.HTTPError as exc:
            return TransientFailure(f"mailer request failed: {exc!r}")
        if response.status_code >= 300:
            return TransientFailure(f"mailer error {response.status_code}: {response.text.strip()}")
        return Sent(message_id=response.headers.get("x-message-id"))
