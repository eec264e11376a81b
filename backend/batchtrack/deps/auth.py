import uuid
from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel
from typing import Callable, Optional
from batchtrack.core.security import decode_token
from batchtrack.schemas import Actor, RequestContext

class CurrentUser(BaseModel):
    user_id: str
    name: str
    email: Optional[str] = None
    role: str
    company_id: Optional[str] = None

    def as_actor(self) -> Actor:
        return Actor(user_id=self.user_id, name=self.name, email=self.email, role=self.role)

def get_current_user(authorization: str | None = Header(default=None)) -> CurrentUser:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        data = decode_token(token, expected_type="access")
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")
    sub = data.get("sub", "unknown")
    return CurrentUser(
        user_id=sub,
        name=data.get("name") or sub,
        email=data.get("email"),
        role=data.get("role", "viewer"),
        company_id=data.get("company_id"),
    )

def require_role(*allowed: str) -> Callable:
    def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if allowed and user.role not in allowed and user.role != "super_admin":
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return checker

def get_company_id(
    user: CurrentUser = Depends(get_current_user),
    x_company_id: str | None = Header(default=None),
) -> str:
    """Tenant for this request: the token's company, else the X-Company-Id header."""
    header = (x_company_id or "").strip() or None
    if user.company_id and header and header != user.company_id:
        if user.role != "super_admin":
            raise HTTPException(status_code=403, detail="Company context does not match token")
        return header
    company_id = user.company_id or header
    if not company_id:
        raise HTTPException(status_code=400, detail="Company context required")
    return company_id

def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        session_id=request.headers.get("x-session-id"),
        request_id=request.headers.get("x-request-id") or uuid.uuid4().hex,
        method=request.method,
        url=str(request.url.path),
    )
