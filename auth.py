"""
Bearer-token authentication.

Tokens are signed, timestamped payloads (itsdangerous) carrying the claims
routes need: ``userId``, ``username``, ``role`` and ``theaterId``. Roles are
``super_admin``, ``theater_admin``, ``theater_staff`` and ``customer``.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pymongo.database import Database
from werkzeug.security import check_password_hash, generate_password_hash

from config import settings
from database import USERS, get_db
from errors import ApiError
from schemas import LoginRequest

logger = logging.getLogger(__name__)

SUPER_ADMIN = "super_admin"
THEATER_ADMIN = "theater_admin"
THEATER_STAFF = "theater_staff"
CUSTOMER = "customer"

serializer = URLSafeTimedSerializer(settings.secret_key, salt="auth-token")
bearer = HTTPBearer(auto_error=False)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def issue_token(user: Dict[str, Any]) -> str:
    claims = {
        "userId": str(user["_id"]),
        "username": user.get("username"),
        "role": user.get("role", THEATER_STAFF),
        "theaterId": str(user["theaterId"]) if user.get("theaterId") else None,
    }
    return serializer.dumps(claims)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return serializer.loads(token, max_age=settings.token_max_age)
    except SignatureExpired:
        raise ApiError(401, "Token expired", code="TOKEN_EXPIRED")
    except BadSignature:
        raise ApiError(401, "Invalid token", code="INVALID_TOKEN")


def current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Dict[str, Any]:
    if credentials is None:
        raise ApiError(401, "Access token required", code="AUTH_REQUIRED")
    return decode_token(credentials.credentials)


def optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[Dict[str, Any]]:
    if credentials is None:
        return None
    try:
        return decode_token(credentials.credentials)
    except ApiError:
        # an unusable token on a public route is treated as anonymous
        return None


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") in (SUPER_ADMIN, THEATER_ADMIN)


def require_theater_access(user: Dict[str, Any], theater_id: Any) -> None:
    if user.get("role") == SUPER_ADMIN:
        return
    if not user.get("theaterId") or user.get("theaterId") != str(theater_id):
        raise ApiError(403, "Access denied", code="ACCESS_DENIED")


def require_super_admin(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
    if user.get("role") != SUPER_ADMIN:
        raise ApiError(403, "Access denied", code="ACCESS_DENIED")
    return user


# -----------------------------
# Routes
# -----------------------------
@router.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db[USERS].find_one({"username": payload.username})
    if not user or not user.get("isActive", True):
        raise ApiError(401, "Invalid username or password", code="INVALID_CREDENTIALS")
    if not check_password_hash(user.get("passwordHash", ""), payload.password):
        raise ApiError(401, "Invalid username or password", code="INVALID_CREDENTIALS")
    logger.info("user %s logged in", payload.username)
    return {
        "success": True,
        "token": issue_token(user),
        "user": {
            "id": str(user["_id"]),
            "username": user.get("username"),
            "role": user.get("role"),
            "theaterId": str(user["theaterId"]) if user.get("theaterId") else None,
        },
    }


@router.get("/me")
def me(user: Dict[str, Any] = Depends(current_user)):
    return {"success": True, "user": user}
