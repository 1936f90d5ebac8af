"""Encryption for OAuth tokens and webhook secrets at rest.

FERNET_KEY may hold several comma-separated keys. The first one encrypts;
all of them are tried on decrypt, so a new key can be prepended and old
ciphertexts re-encrypted with rotate_token() before the old key is dropped.
"""

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from app.core.config import settings


_fernet: MultiFernet | None = None


def _configured_keys() -> list[str]:
    return [key.strip() for key in settings.FERNET_KEY.split(",") if key.strip()]


def get_fernet() -> MultiFernet:
    """Get or create the MultiFernet used for secrets at rest."""
    global _fernet
    if _fernet is None:
        keys = _configured_keys()
        if not keys:
            raise RuntimeError(
                "FERNET_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        _fernet = MultiFernet([Fernet(key.encode()) for key in keys])
    return _fernet


def reset_fernet() -> None:
    """Drop the cached instance after FERNET_KEY changes."""
    global _fernet
    _fernet = None


def encrypt_token(token: str) -> str:
    if not token:
        return ""
    return get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str | None) -> str:
    """Decrypt a stored token. Raises ValueError when no key matches."""
    if not encrypted:
        return ""
    try:
        return get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted token")


def rotate_token(encrypted: str | None) -> str | None:
    """Re-encrypt a stored token under the primary key."""
    if not encrypted:
        return encrypted
    try:
        return get_fernet().rotate(encrypted.encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted token")


def is_encryption_configured() -> bool:
    return bool(_configured_keys())
