from fastapi import Request, HTTPException, status
from pydantic import BaseModel
from typing import Optional, Callable
import logging
from auth import decode_access_token
from models import UserRole, Actor

logger = logging.getLogger(__name__)

ACT_AS_HEADER = "X-Act-As-Role"


class RequestContext(BaseModel):
    """Who is calling and under which role, for the lifetime of one request."""
    staff_id: str
    name: str = ""
    role: UserRole
    token_role: UserRole
    token: str

    @property
    def actor(self) -> Actor:
        return Actor(staff_id=self.staff_id, name=self.name, role=self.role)

    @property
    def is_impersonating(self) -> bool:
        return self.role != self.token_role


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


async def get_current_user(request: Request) -> Optional[RequestContext]:
    """Extract and validate the caller from the bearer token."""
    token = _bearer_token(request)
    if not token:
        return None

    payload = decode_access_token(token)
    if not payload:
        return None

    staff_id = payload.get("staff_id") or payload.get("sub")
    try:
        token_role = UserRole(payload.get("role"))
    except ValueError:
        logger.warning(f"Token for {staff_id} carries unknown role {payload.get('role')!r}")
        return None
    if not staff_id:
        return None

    role = token_role
    act_as = request.headers.get(ACT_AS_HEADER)
    if act_as:
        if token_role != UserRole.ADMIN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only admins may act as another role"
            )
        try:
            role = UserRole(act_as)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role: {act_as}"
            )
        logger.info(f"Admin {staff_id} acting as {role.value} on {request.url.path}")

    return RequestContext(
        staff_id=staff_id,
        name=payload.get("name") or "",
        role=role,
        token_role=token_role,
        token=token,
    )


async def require_auth(request: Request) -> RequestContext:
    """Require valid authentication."""
    ctx = await get_current_user(request)
    if not ctx:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return ctx


def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory: the effective role must be one of roles."""
    allowed = {r.value for r in roles}

    async def guard(request: Request) -> RequestContext:
        ctx = await require_auth(request)
        if ctx.role.value not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return ctx

    return guard


admin_route_guard = require_roles(UserRole.ADMIN)
overseer_route_guard = require_roles(UserRole.ADMIN, UserRole.SUPERVISOR)
reports_route_guard = require_roles(UserRole.ADMIN, UserRole.ACCOUNTANT)
