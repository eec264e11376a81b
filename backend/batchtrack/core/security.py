import os, jwt
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-prod")
JWT_ALGO = os.getenv("JWT_ALGO", "HS256")

# Access/refresh lifetimes (minutes)
ACCESS_TTL_MIN = int(os.getenv("JWT_ACCESS_TTL_MIN", "30"))
REFRESH_TTL_MIN = int(os.getenv("JWT_REFRESH_TTL_MIN", "10080"))

ROLES = ("viewer", "operator", "supervisor", "admin", "super_admin")

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _encode(payload: Dict[str, Any]) -> str:
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)

def _decode(token: str) -> Dict[str, Any]:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])

def _token(token_type: str, ttl_min: int, user_id: str, role: str, name: Optional[str],
           email: Optional[str], company_id: Optional[str]) -> str:
    now = _now()
    exp = now + timedelta(minutes=ttl_min)
    payload = {
        "sub": user_id,
        "name": name or user_id,
        "email": email,
        "role": role,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    if company_id:
        payload["company_id"] = company_id
    return _encode(payload)

def create_access_token(user_id: str, role: str, name: Optional[str] = None,
                        email: Optional[str] = None, company_id: Optional[str] = None) -> str:
    return _token("access", ACCESS_TTL_MIN, user_id, role, name, email, company_id)

def create_refresh_token(user_id: str, role: str, name: Optional[str] = None,
                         email: Optional[str] = None, company_id: Optional[str] = None) -> str:
    return _token("refresh", REFRESH_TTL_MIN, user_id, role, name, email, company_id)

def decode_token(token: str, expected_type: str | None = None) -> Dict[str, Any]:
    data = _decode(token)
    if expected_type and data.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"unexpected token type: {data.get('type')}")
    return data
