"""Voice agent connections - webhook trust per (org, provider, agent)."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_token, encrypt_token
from app.core.exceptions import UnknownAgent
from app.db.models import VoiceAgentConnection

logger = logging.getLogger(__name__)

SECRET_PREFIX = "whsec_"


def generate_webhook_secret() -> str:
    return f"{SECRET_PREFIX}{secrets.token_hex(24)}"


def get_connection(
    db: Session, org_id: UUID, provider: str, agent_id: str
) -> VoiceAgentConnection | None:
    return (
        db.query(VoiceAgentConnection)
        .filter(
            VoiceAgentConnection.organization_id == org_id,
            VoiceAgentConnection.provider == provider,
            VoiceAgentConnection.agent_id == agent_id,
        )
        .first()
    )


def resolve_agent_connection(
    db: Session, org_id: UUID, provider: str, agent_id: str
) -> VoiceAgentConnection:
    """
    Find the active connection for an agent.

    Runs before any write so unknown agents never touch customer data.

    Raises:
        UnknownAgent: no connection, or it is inactive
    """
    connection = get_connection(db, org_id, provider, agent_id)
    if not connection or not connection.is_active:
        raise UnknownAgent(f"Unknown agent for {provider}")
    return connection


def verification_secrets(
    connection: VoiceAgentConnection, now: datetime | None = None
) -> list[str]:
    """Current secret first, then the previous one while inside the grace window."""
    result: list[str] = []
    current = decrypt_token(connection.webhook_secret_encrypted)
    if current:
        result.append(current)

    if connection.previous_webhook_secret_encrypted and connection.secret_rotated_at:
        now = now or datetime.now(timezone.utc)
        rotated_at = connection.secret_rotated_at
        if rotated_at.tzinfo is None:
            rotated_at = rotated_at.replace(tzinfo=timezone.utc)
        grace = timedelta(seconds=settings.WEBHOOK_SECRET_GRACE_SECONDS)
        if now - rotated_at <= grace:
            previous = decrypt_token(connection.previous_webhook_secret_encrypted)
            if previous:
                result.append(previous)
    return result


def rotate_webhook_secret(
    db: Session, org_id: UUID, provider: str, agent_id: str
) -> tuple[VoiceAgentConnection, str]:
    """
    Create or rotate the webhook secret for an agent.

    The old secret stays valid for WEBHOOK_SECRET_GRACE_SECONDS. Returns the
    connection and the new plaintext secret (shown once).
    """
    new_secret = generate_webhook_secret()
    now = datetime.now(timezone.utc)

    connection = get_connection(db, org_id, provider, agent_id)
    if connection:
        connection.previous_webhook_secret_encrypted = connection.webhook_secret_encrypted
        connection.webhook_secret_encrypted = encrypt_token(new_secret)
        connection.secret_rotated_at = now
        connection.is_active = True
    else:
        connection = VoiceAgentConnection(
            organization_id=org_id,
            provider=provider,
            agent_id=agent_id,
            webhook_secret_encrypted=encrypt_token(new_secret),
            is_active=True,
        )
        db.add(connection)

    db.commit()
    db.refresh(connection)
    logger.info("Webhook secret rotated org=%s provider=%s agent=%s", org_id, provider, agent_id)
    return connection, new_secret


def touch_last_webhook(db: Session, connection: VoiceAgentConnection) -> None:
    """Stamp last_webhook_at (flushed with the caller's transaction)."""
    connection.last_webhook_at = datetime.now(timezone.utc)
    db.flush()
