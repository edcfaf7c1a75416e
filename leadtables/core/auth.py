from dataclasses import dataclass, field

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from leadtables.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    org_id: str
    roles: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return "admin" in {role.lower() for role in self.roles}


def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid bearer token") from exc

    subject = payload.get("sub")
    org_id = payload.get("org_id")
    if not subject or not org_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token is missing sub or org_id")

    roles = payload.get("roles", ["sales"])
    if not isinstance(roles, list):
        roles = ["sales"]
    return AuthUser(sub=str(subject), org_id=str(org_id), roles=[str(role) for role in roles])
