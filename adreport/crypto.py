from __future__ import annotations

import base64
import hashlib
from cryptography.fernet import Fernet, InvalidToken
from .env_settings import get_env

ENC_PREFIX = "enc:"


def _fernet() -> Fernet:
    secret = (get_env().secret_key or "").encode("utf-8")
    if not secret:
        raise ValueError("ADREPORT_SECRET_KEY не задан: невозможно работать с зашифрованными значениями")
    key = base64.urlsafe_b64encode(hashlib.sha256(secret).digest())
    return Fernet(key)


def encrypt_str(value: str) -> str:
    if not value:
        return ""
    f = _fernet()
    return f.encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_str(token: str) -> str:
    if not token:
        return ""
    f = _fernet()
    try:
        return f.decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        raise ValueError("Некорректный зашифрованный токен (неверный ADREPORT_SECRET_KEY?)")


def is_encrypted(value: str) -> bool:
    return (value or "").startswith(ENC_PREFIX)


def reveal(value: str) -> str:
    """Plain value as is; `enc:<token>` decrypted with ADREPORT_SECRET_KEY."""
    if is_encrypted(value):
        return decrypt_str(value[len(ENC_PREFIX):])
    return value or ""
