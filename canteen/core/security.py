"""
Order Service: Security helpers (JWT decode only, shared secret)

Tokens are issued by the identity service and carry:
  sub         user id
  role        "student" | "manager"
  manager_id  the canteen a student orders from (students only)
"""
from dataclasses import dataclass
from typing import Any

from jose import jwt

from canteen.core.config import get_settings
from canteen.core.errors import Forbidden
from canteen.models.user import Role

settings = get_settings()


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role
    manager_id: str | None = None

    @property
    def is_student(self) -> bool:
        return self.role is Role.STUDENT


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def actor_from_claims(claims: dict[str, Any]) -> Actor:
    user_id = claims.get("sub")
    if not user_id:
        raise Forbidden("Token has no subject.")
    try:
        role = Role(claims.get("role"))
    except ValueError:
        raise Forbidden(f"Unknown role {claims.get('role')!r}.")
    return Actor(id=str(user_id), role=role, manager_id=claims.get("manager_id"))
