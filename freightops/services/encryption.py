"""
Encryption service for cached carrier credentials

Provides Fernet (AES-128-CBC + HMAC) encryption for passwords held in the
credential vault. The key is derived from SECRET_KEY with PBKDF2; without a
SECRET_KEY an ephemeral key is generated for the life of the process, which
is enough because vault contents are never persisted.

Also provides masking helpers so usernames and bearer tokens never reach
the logs in clear text.
"""
import base64
import logging
import re
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from freightops.core.config import settings

logger = logging.getLogger(__name__)

_ENCRYPTION_SALT = b"freightops_credential_vault_v1"

# Cached Fernet instance
_fernet: Optional[Fernet] = None


def _derive_key(secret: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_ENCRYPTION_SALT,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode()))


def _get_fernet() -> Fernet:
    """Get or create Fernet instance with derived key."""
    global _fernet

    if _fernet is None:
        if settings.SECRET_KEY:
            key = _derive_key(settings.SECRET_KEY)
        else:
            logger.info("No SECRET_KEY configured, using an ephemeral vault key")
            key = Fernet.generate_key()
        _fernet = Fernet(key)

    return _fernet


def encrypt_secret(plaintext: str) -> str:
    """
    Encrypt a credential string.

    Args:
        plaintext: The sensitive value to encrypt

    Returns:
        Base64-encoded encrypted string
    """
    if not plaintext:
        return ""

    try:
        encrypted = _get_fernet().encrypt(plaintext.encode())
        return encrypted.decode()
    except Exception as e:
        logger.error(f"Encryption failed: {e}")
        raise ValueError("Failed to encrypt sensitive data")


def decrypt_secret(ciphertext: str) -> str:
    """
    Decrypt a credential string.

    Args:
        ciphertext: Base64-encoded encrypted string

    Returns:
        Decrypted plaintext
    """
    if not ciphertext:
        return ""

    try:
        decrypted = _get_fernet().decrypt(ciphertext.encode())
        return decrypted.decode()
    except InvalidToken:
        logger.error("Decryption failed: Invalid token (wrong key or corrupted data)")
        raise ValueError("Failed to decrypt data - invalid token")
    except Exception as e:
        logger.error(f"Decryption failed: {e}")
        raise ValueError("Failed to decrypt sensitive data")


def mask_username(username: str) -> str:
    """
    Mask a username for display (e.g., j***@example.com, o***s).

    Args:
        username: Login name or email

    Returns:
        Masked username
    """
    if not username:
        return "***"

    if "@" in username:
        local, domain = username.rsplit("@", 1)
        masked_local = local[0] + "***" if local else "*"
        return f"{masked_local}@{domain}"

    if len(username) <= 2:
        return "*" * len(username)

    return username[0] + "***" + username[-1]


def mask_token(token: Optional[str]) -> str:
    """Show only the first characters of a bearer token."""
    if not token:
        return "(none)"
    if len(token) <= 8:
        return "***"
    return token[:6] + "..."


def sanitize_for_logging(text: str, max_length: int = 500) -> str:
    """
    Remove secrets from text for safe logging.

    Args:
        text: Text that may contain tokens or passwords
        max_length: Maximum length of result

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ""

    sanitized = text[:max_length]

    patterns = [
        # Authorization headers
        (r'Bearer\s+[A-Za-z0-9\-._~+/]+=*', 'Bearer [TOKEN]'),
        # JSON token/password fields
        (r'"(token|accessToken|access_token|password)"\s*:\s*"[^"]*"', r'"\1": "[REDACTED]"'),
        # Emails
        (r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b', '[EMAIL]'),
    ]

    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized
