"""
Token encryption for stored OAuth credentials
"""

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from .config import QUICKBOOKS_ENCRYPTION_KEY, SECRET_KEY

logger = logging.getLogger(__name__)


def _build_cipher() -> Fernet:
    if QUICKBOOKS_ENCRYPTION_KEY:
        return Fernet(QUICKBOOKS_ENCRYPTION_KEY.encode())
    # Derive a valid 32-byte Fernet key from SECRET_KEY
    digest = hashlib.sha256(SECRET_KEY.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


cipher_suite = _build_cipher()


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage"""
    return cipher_suite.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token"""
    try:
        return cipher_suite.decrypt(encrypted_token.encode()).decode()
    except InvalidToken:
        logger.error("❌ Failed to decrypt stored token - was the encryption key rotated?")
        raise
