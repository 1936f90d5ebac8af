import pytest
from cryptography.fernet import Fernet

from app.core import encryption
from app.core.config import settings
from app.db.models import IntegrationCredential, VoiceAgentConnection
from app.services import token_vault, voice_connection_service

INTERNAL_HEADERS = {"X-Internal-Secret": "test-internal-secret"}


@pytest.fixture
def fernet_keys(monkeypatch):
    """Swap FERNET_KEY for the test and rebuild the cached MultiFernet."""

    def _use(*keys: str) -> None:
        monkeypatch.setattr(settings, "FERNET_KEY", ",".join(keys))
        encryption.reset_fernet()

    yield _use
    monkeypatch.undo()
    encryption.reset_fernet()


def test_empty_values_pass_through():
    assert encryption.encrypt_token("") == ""
    assert encryption.decrypt_token(None) == ""
    assert encryption.rotate_token(None) is None


def test_missing_key_raises(fernet_keys):
    fernet_keys()
    assert encryption.is_encryption_configured() is False
    with pytest.raises(RuntimeError):
        encryption.encrypt_token("secret")


def test_old_key_still_decrypts_after_new_key_is_prepended(fernet_keys):
    old_key = Fernet.generate_key().decode()
    new_key = Fernet.generate_key().decode()

    fernet_keys(old_key)
    stored = encryption.encrypt_token("refresh-token")

    fernet_keys(new_key, old_key)
    assert encryption.decrypt_token(stored) == "refresh-token"

    rotated = encryption.rotate_token(stored)
    fernet_keys(new_key)
    assert encryption.decrypt_token(rotated) == "refresh-token"
    with pytest.raises(ValueError):
        encryption.decrypt_token(stored)


def test_unknown_ciphertext_is_value_error(fernet_keys):
    fernet_keys(Fernet.generate_key().decode())
    with pytest.raises(ValueError):
        encryption.decrypt_token("not-a-token")


def test_reencrypt_secrets_moves_everything_to_primary_key(db, test_org, fernet_keys):
    old_key = Fernet.generate_key().decode()
    new_key = Fernet.generate_key().decode()

    fernet_keys(old_key)
    token_vault.save_credential(db, test_org.id, access_token="a1", refresh_token="r1", expires_in=3600)
    voice_connection_service.rotate_webhook_secret(db, test_org.id, "retell", "agent_1")
    _, second_secret = voice_connection_service.rotate_webhook_secret(
        db, test_org.id, "retell", "agent_1"
    )

    fernet_keys(new_key, old_key)
    counts = token_vault.reencrypt_secrets(db)
    assert counts == {"credentials": 1, "voice_connections": 1}

    fernet_keys(new_key)
    credential = db.query(IntegrationCredential).one()
    assert encryption.decrypt_token(credential.access_token_encrypted) == "a1"
    assert encryption.decrypt_token(credential.refresh_token_encrypted) == "r1"
    connection = db.query(VoiceAgentConnection).one()
    assert encryption.decrypt_token(connection.webhook_secret_encrypted) == second_secret
    assert encryption.decrypt_token(connection.previous_webhook_secret_encrypted)


@pytest.mark.asyncio
async def test_reencrypt_route(client, db, test_org):
    token_vault.save_credential(db, test_org.id, access_token="a1", refresh_token="r1", expires_in=3600)

    res = await client.post("/internal/encryption/reencrypt", headers=INTERNAL_HEADERS)

    assert res.status_code == 200
    assert res.json() == {"credentials": 1, "voice_connections": 0}


@pytest.mark.asyncio
async def test_reencrypt_route_conflict_on_undecryptable_secret(client, db, test_org, fernet_keys):
    fernet_keys(Fernet.generate_key().decode())
    token_vault.save_credential(db, test_org.id, access_token="a1", expires_in=3600)

    fernet_keys(Fernet.generate_key().decode())
    res = await client.post("/internal/encryption/reencrypt", headers=INTERNAL_HEADERS)

    assert res.status_code == 409
