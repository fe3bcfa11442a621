"""Fernet encryption for inventory secrets (codes and account credentials)."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app


def _fernet() -> Fernet:
    key = (current_app.config.get("ENCRYPTION_KEY") or "").strip()
    if not key:
        # Dev fallback: derive a stable key from SECRET_KEY
        digest = hashlib.sha256((current_app.config.get("SECRET_KEY") or "").encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest).decode("ascii")
    return Fernet(key.encode("ascii"))


def encrypt_text(plain: str) -> str:
    return _fernet().encrypt((plain or "").encode("utf-8")).decode("ascii")


def decrypt_text(token: str) -> str | None:
    try:
        return _fernet().decrypt((token or "").encode("ascii")).decode("utf-8")
    except InvalidToken:
        current_app.logger.error("inventory secret could not be decrypted (key rotated?)")
        return None


def fingerprint(plain: str) -> str:
    return hashlib.sha256((plain or "").strip().encode("utf-8")).hexdigest()
