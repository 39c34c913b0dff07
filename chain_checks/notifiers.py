from __future__ import annotations

import json
from typing import Any, Protocol, Sequence

import httpx
import structlog

from chain_checks.config import ChainChecksConfig


logger = structlog.get_logger(__name__)

ALERT_SUBJECT_PREFIX = "Chain Checks Alert"
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_LEN = 3900


class NotifierError(Exception):
    """A notifier could not deliver to one of its recipients."""


class Notifier(Protocol):
    @property
    def name(self) -> str: ...

    async def alert(self, payload: bytes, memo: str) -> None: ...


def subject_for(memo: str) -> str:
    return f"{ALERT_SUBJECT_PREFIX}: {memo}"


def payload_text(payload: bytes) -> str:
    return payload.decode("utf-8", errors="replace")


class RecipientNotifier:
    """
    Delivers an alert to each recipient in order. The first failing recipient
    aborts the remaining ones and surfaces as NotifierError.
    """

    def __init__(self, name: str, recipients: Sequence[str], client: httpx.AsyncClient, *, timeout: float = 15.0) -> None:
        self._name = name
        self.recipients = list(recipients)
        self.client = client
        self.timeout = timeout
        self.log = logger.bind(notifier=name)

    @property
    def name(self) -> str:
        return self._name

    async def deliver(self, recipient: str, memo: str, body: str) -> None:
        raise NotImplementedError

    def redact(self, text: str) -> str:
        return text

    async def alert(self, payload: bytes, memo: str) -> None:
        body = payload_text(payload)
        for recipient in self.recipients:
            try:
                await self.deliver(recipient, memo, body)
            except httpx.HTTPError as exc:
                err = self.redact(f"{type(exc).__name__}: {exc}")
                self.log.error("Failed to send alert", memo=memo, recipient=recipient, error=err)
                raise NotifierError(f"{self.name}: delivery to {recipient} failed: {err}") from exc
            except NotifierError as exc:
                self.log.error("Failed to send alert", memo=memo, recipient=recipient, error=str(exc))
                raise
            self.log.debug("Sent alert", memo=memo, recipient=recipient)


class SendGridNotifier(RecipientNotifier):
    """Email (and email-to-SMS) delivery via the SendGrid v3 API."""

    def __init__(
        self,
        recipients: Sequence[str],
        client: httpx.AsyncClient,
        *,
        api_key: str,
        from_name: str,
        from_address: str,
        name: str = "SendGrid",
        send_url: str = SENDGRID_SEND_URL,
    ) -> None:
        super().__init__(name, recipients, client)
        self.api_key = api_key
        self.from_name = from_name
        self.from_address = from_address
        self.send_url = send_url

    def build_message(self, recipient: str, subject: str, body: str) -> dict[str, Any]:
        return {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": self.from_address, "name": self.from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": body}],
        }

    def redact(self, text: str) -> str:
        return text.replace(self.api_key, "<redacted>") if self.api_key else text

    async def deliver(self, recipient: str, memo: str, body: str) -> None:
        resp = await self.client.post(
            self.send_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=self.build_message(recipient, subject_for(memo), body),
            timeout=self.timeout,
        )
        # SendGrid queues mail and answers 202; anything else is a failure.
        if resp.status_code != 202:
            raise NotifierError(f"SendGrid returned HTTP {resp.status_code}: {resp.text[:500]}")


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    remaining = (text or "").strip()
    if not remaining:
        return [""]
    max_len = max(1, int(max_len))
    chunks: list[str] = []
    while len(remaining) > max_len:
        # Prefer a newline boundary unless it would leave a tiny chunk.
        cut = remaining.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining:
        chunks.append(remaining)
    return chunks


class TelegramNotifier(RecipientNotifier):
    """Bot API delivery; each recipient is a chat id."""

    def __init__(
        self,
        chat_ids: Sequence[str],
        client: httpx.AsyncClient,
        *,
        bot_token: str,
        name: str = "Telegram",
        api_base: str = TELEGRAM_API_BASE,
    ) -> None:
        super().__init__(name, chat_ids, client)
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")

    def redact(self, text: str) -> str:
        return text.replace(self.bot_token, "<redacted>") if self.bot_token else text

    async def deliver(self, recipient: str, memo: str, body: str) -> None:
        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        for part in split_telegram_message(f"{subject_for(memo)}\n\n{body}"):
            resp = await self.client.post(url, json={"chat_id": recipient, "text": part}, timeout=self.timeout)
            try:
                data = resp.json()
            except ValueError:
                data = {}
            if not (isinstance(data, dict) and data.get("ok")):
                desc = data.get("description") if isinstance(data, dict) else None
                raise NotifierError(self.redact(f"Telegram returned HTTP {resp.status_code}: {desc or resp.text[:300]}"))


class WebhookNotifier(RecipientNotifier):
    """POSTs a JSON document to each configured URL; any 2xx counts as delivered."""

    def __init__(self, urls: Sequence[str], client: httpx.AsyncClient, *, name: str = "Webhook") -> None:
        super().__init__(name, urls, client)

    async def deliver(self, recipient: str, memo: str, body: str) -> None:
        try:
            payload: Any = json.loads(body)
        except ValueError:
            payload = body
        resp = await self.client.post(
            recipient,
            json={"memo": memo, "subject": subject_for(memo), "payload": payload},
            timeout=self.timeout,
        )
        if not (200 <= resp.status_code < 300):
            raise NotifierError(f"webhook returned HTTP {resp.status_code}")


def build_notifiers(cfg: ChainChecksConfig, client: httpx.AsyncClient) -> list[Notifier]:
    notifiers: list[Notifier] = []
    targets = cfg.targets

    sendgrid_recipients = [*targets.email_recipients, *targets.sms_recipients]
    if sendgrid_recipients:
        sg = cfg.integrations.sendgrid
        notifiers.append(
            SendGridNotifier(
                sendgrid_recipients,
                client,
                api_key=sg.api_key,
                from_name=sg.from_name,
                from_address=sg.from_address,
            )
        )
    if targets.telegram_chat_ids:
        notifiers.append(
            TelegramNotifier(targets.telegram_chat_ids, client, bot_token=cfg.integrations.telegram.bot_token)
        )
    if targets.webhooks:
        notifiers.append(WebhookNotifier(targets.webhooks, client))
    return notifiers
