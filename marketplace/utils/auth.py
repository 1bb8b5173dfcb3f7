from dataclasses import dataclass
from typing import Optional

import jwt

from ..errors import Forbidden, Unauthorized
from ..models.user import STAFF_ROLES


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def decode_actor(authorization: Optional[str], secret: str) -> Optional[Actor]:
    """Resolve ``Authorization: Bearer <jwt>`` to an Actor; ``None`` when absent."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Malformed Authorization header")
    try:
        claims = jwt.decode(token.strip(), secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")
    sub = claims.get("sub")
    if not sub:
        raise Unauthorized("Token has no subject")
    return Actor(user_id=str(sub), role=str(claims.get("role") or "customer"))


def require_role(actor: Optional[Actor], *roles: str) -> Actor:
    if actor is None:
        raise Unauthorized("Authentication required")
    if roles and actor.role not in roles:
        raise Forbidden("Insufficient role", role=actor.role, required=list(roles))
    return actor
