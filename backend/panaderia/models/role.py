from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from panaderia.db.base import Base


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    # JSON-encoded list of permission strings
    permissions: Mapped[str] = mapped_column(Text, nullable=False)
