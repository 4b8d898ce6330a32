"""
Principal resolution

Tokens are issued elsewhere; this module only verifies them and loads the
matching user document, which is then handed to the services explicitly.
"""

from typing import Optional

import jwt
from bson import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

import config
from database import get_db
from errors import AuthenticationError, ForbiddenError

bearer_scheme = HTTPBearer(auto_error=False)


def create_token(user_id) -> str:
    return jwt.encode({"id": str(user_id)}, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_db),
) -> dict:
    if credentials is None:
        raise AuthenticationError("Not authorized to access this route")
    try:
        payload = jwt.decode(credentials.credentials, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise AuthenticationError("Not authorized to access this route")

    user_id = payload.get("id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthenticationError("Not authorized to access this route")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise AuthenticationError("Not authorized to access this route")
    return user


def require_roles(*roles: str):
    def dependency(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise ForbiddenError(f"User role {user.get('role')} is not authorized to access this route")
        return user
    return dependency


def is_admin(principal: dict) -> bool:
    return principal.get("role") == "admin"


def ensure_owner_or_admin(principal: dict, owner_id, message: str) -> None:
    if is_admin(principal):
        return
    if owner_id is None or str(owner_id) != str(principal["_id"]):
        raise ForbiddenError(message)
