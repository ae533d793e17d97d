"""
Order Service: User model

[CONFIG DATA] Owned by the identity service; read here only to find a
manager's UPI id for the payment link.
"""
from enum import Enum as PyEnum

from sqlalchemy import String, Enum
from sqlalchemy.orm import Mapped, mapped_column
from canteen.db.database import Base


class Role(str, PyEnum):
    STUDENT = "student"
    MANAGER = "manager"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="user_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    manager_id: Mapped[str | None] = mapped_column(String(36), nullable=True)  # students only
    upi_id: Mapped[str | None] = mapped_column(String(255), nullable=True)  # managers only

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role.value}>"
