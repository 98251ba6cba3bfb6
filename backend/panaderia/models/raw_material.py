from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, Index, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from panaderia.db.base import Base


ACTIVE_NAME_INDEX = "uq_raw_materials_active_name"


class RawMaterial(Base):
    __tablename__ = "raw_materials"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="quantity_non_negative"),
        CheckConstraint("minimum >= 0", name="minimum_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"), nullable=False)
    initial_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"), nullable=False)
    minimum: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"), nullable=False)
    supplier: Mapped[str | None] = mapped_column(String(160), nullable=True)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


# names are unique among active items only, ignoring case; soft-deleted names can be reused
Index(
    ACTIVE_NAME_INDEX,
    func.lower(RawMaterial.__table__.c.name),
    unique=True,
    postgresql_where=text("is_active"),
    sqlite_where=text("is_active = 1"),
)
