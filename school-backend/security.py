import hashlib
import hmac
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

HASH_PREFIX = "pbkdf2_sha256"
HASH_ITERATIONS = 100000
TEMP_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def get_password_hash(password: str) -> str:
    """Hash a password using PBKDF2 with a random salt"""
    salt = secrets.token_hex(16)
    pwd_hash = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), HASH_ITERATIONS)
    return f"{HASH_PREFIX}${HASH_ITERATIONS}${salt}${pwd_hash.hex()}"


def is_password_hash(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(HASH_PREFIX + "$")


def ensure_password_hash(value: str) -> str:
    """Hash a raw password, leaving an existing digest untouched."""
    if not value or is_password_hash(value):
        return value
    return get_password_hash(value)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against its hash"""
    if not is_password_hash(hashed_password):
        return False
    try:
        _, iterations, salt, stored_hash = hashed_password.split("$", 3)
        pwd_hash = hashlib.pbkdf2_hmac("sha256", plain_password.encode(), salt.encode(), int(iterations))
    except ValueError:
        return False
    return hmac.compare_digest(pwd_hash.hex(), stored_hash)


def generate_temporary_password(length: int = 8) -> str:
    return "".join(secrets.choice(TEMP_PASSWORD_ALPHABET) for _ in range(length))


def create_access_token(data: Dict[str, Any], secret_key: str, expires_delta: timedelta,
                        algorithm: str = "HS256") -> str:
    """Create a signed JWT that expires after expires_delta"""
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_token(token: str, secret_key: str, algorithm: str = "HS256") -> Dict[str, Any]:
    """
    Decode and verify a JWT.

    Raises jwt.ExpiredSignatureError for expired tokens and jwt.PyJWTError for
    anything else that fails verification.
    """
    return jwt.decode(token, secret_key, algorithms=[algorithm])


def session_payload(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "userId": user["id"],
        "email": user["email"],
        "role": user["role"],
        "username": user["username"],
        "name": user["name"],
    }
