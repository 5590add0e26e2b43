"""Symmetric encryption for platform tokens stored at rest."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken


def _fernet(secret_key: str) -> Fernet:
    """Build a Fernet cipher keyed by SHA-256 of the application secret."""
    digest = hashlib.sha256(secret_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_token(token: str, secret_key: str) -> str:
    """Encrypt a platform token and return URL-safe ciphertext."""
    return _fernet(secret_key).encrypt(token.encode()).decode()


def decrypt_token(ciphertext: str, secret_key: str) -> str:
    """Decrypt a stored platform token. Raises ValueError on failure.

    A changed ``SECRET_KEY`` makes every stored token undecryptable; owners
    must re-create their mirrors in that case.
    """
    try:
        return _fernet(secret_key).decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Failed to decrypt stored credential") from exc
