"""Webhook handler registry."""

from __future__ import annotations

from app.services.webhooks.base import WebhookHandler
from app.services.webhooks.voice import VoiceWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "retell": VoiceWebhookHandler(provider="retell"),
}


def get_handler(name: str) -> WebhookHandler:
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler


def supported_providers() -> list[str]:
    return sorted(_HANDLERS)
