import uuid
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from consentgate.core.config import settings
from consentgate.core.errors import Unauthorized, Forbidden

http_bearer = HTTPBearer(auto_error=False)

PATIENT = "patient"
DOCTOR = "doctor"
PHARMACIST = "pharmacist"
ADMIN = "admin"
PRACTITIONER_ROLES = frozenset({DOCTOR, PHARMACIST})

class Principal(BaseModel):
    user_id: uuid.UUID
    org_id: uuid.UUID
    roles: list[str] = []
    scopes: list[str] = []

    def has_role(self, *roles: str) -> bool:
        return any(r in self.roles for r in roles)

    @property
    def is_patient(self) -> bool:
        return PATIENT in self.roles

    @property
    def is_practitioner(self) -> bool:
        return any(r in PRACTITIONER_ROLES for r in self.roles)

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise Unauthorized(f"Invalid token: {e}")

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local/dev, allow missing token and use default org
    if creds is None and settings.ENV == "local":
        return Principal(user_id=uuid.uuid4(), org_id=uuid.UUID(settings.DEFAULT_ORG_ID), roles=[ADMIN], scopes=["*"])
    if creds is None:
        raise Unauthorized("Missing token")

    data = _decode_token(creds.credentials)
    try:
        user_id = uuid.UUID(str(data.get("sub") or data.get("user_id")))
        org_id = uuid.UUID(str(data.get("org_id") or settings.DEFAULT_ORG_ID))
    except ValueError:
        raise Unauthorized("Invalid token subject")
    roles = data.get("roles", [])
    scopes = data.get("scopes", [])
    return Principal(user_id=user_id, org_id=org_id, roles=roles, scopes=scopes)

def require_scopes(*needed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if "*" in principal.scopes:
            return principal
        if not set(needed).issubset(set(principal.scopes)):
            raise Forbidden("Insufficient scopes")
        return principal
    return dep

def require_roles(*allowed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_role(*allowed):
            raise Forbidden("Role not permitted for this operation")
        return principal
    return dep
