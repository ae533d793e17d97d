"""
Order Service: Menu item model

[CONFIG DATA] Maintained by the menu service. Orders only reference rows here
and resolve them into full values when a snapshot is built.
"""
import uuid

from sqlalchemy import String, Integer, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column
from canteen.db.database import Base


class MenuItem(Base):
    __tablename__ = "menu_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    manager_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False)  # in paise
    discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # paise off unit price
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="main")
    is_special: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def unit_price(self) -> int:
        return max(0, self.price - (self.discount or 0))
