"""
Request authentication dependencies.

Every gate reads the session token from the ``Authorization: Bearer`` header
or, failing that, the ``token`` cookie, verifies it with the signing secret
from ``Settings`` and resolves the embedded user id against the users
collection.
"""

from typing import Optional, Dict, Any, Callable

import jwt
from fastapi import Depends, HTTPException, Request, status

from config import Settings, get_settings
from database import get_db
from mongodb_manager import MongoDBManager
from security import decode_token

PRIVATE_USER_FIELDS = ("password", "resetPasswordToken", "resetPasswordExpires")


def extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):].strip()
        if token:
            return token
    return request.cookies.get("token")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """User document without credential fields"""
    return {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}


def authenticate_request(request: Request, db: MongoDBManager, settings: Settings) -> Dict[str, Any]:
    """Decode the request's token and load its user; 401 on any failure"""
    token = extract_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, no token",
        )

    try:
        payload = decode_token(token, settings.secret_key, settings.algorithm)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, invalid token",
        )

    user = db.get_user(str(payload.get("userId")))
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def _require_provisioned(user: Dict[str, Any]):
    if user["role"] != "admin" and not user.get("addedBy"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account was not created by an administrator",
        )


def get_current_user(request: Request,
                     db: MongoDBManager = Depends(get_db),
                     settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    """Any signed-in, active user"""
    user = authenticate_request(request, db, settings)
    if not user.get("isActive", True):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is deactivated",
        )
    _require_provisioned(user)
    request.state.user = user
    return user


def require_admin(request: Request,
                  db: MongoDBManager = Depends(get_db),
                  settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    user = authenticate_request(request, db, settings)
    if not user.get("isActive", True):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is deactivated",
        )
    if user["role"] != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    request.state.user = user
    return user


def require_roles(*allowed_roles: str) -> Callable[..., Dict[str, Any]]:
    """
    Build a dependency that admits admins plus the given roles.

    Non-admins must also have been provisioned by an admin and have finished
    registration (a password is set).
    """
    def dependency(request: Request,
                   db: MongoDBManager = Depends(get_db),
                   settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
        user = authenticate_request(request, db, settings)
        if not user.get("isActive", True):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Account is deactivated",
            )

        if user["role"] != "admin":
            _require_provisioned(user)
            if not user.get("password"):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Please complete your registration first",
                )
            if user["role"] not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Role '{user['role']}' is not authorized to access this route",
                )

        request.state.user = user
        return user

    return dependency
