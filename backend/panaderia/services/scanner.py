from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from panaderia.models.raw_material import RawMaterial
from panaderia.services.ledger import to_quantity


@dataclass(frozen=True)
class CriticalItem:
    id: int
    name: str
    unit: str
    quantity: Decimal
    minimum: Decimal

    @property
    def shortfall(self) -> Decimal:
        return max(self.minimum - self.quantity, Decimal("0.000"))


def _critical_condition():
    return RawMaterial.is_active.is_(True), RawMaterial.quantity <= RawMaterial.minimum


def find_critical_items(db: Session) -> list[CriticalItem]:
    """Active items at or below their minimum. Read-only; may trail a concurrent commit."""
    rows = db.scalars(
        select(RawMaterial)
        .where(*_critical_condition())
        .order_by(RawMaterial.name.asc(), RawMaterial.id.asc())
        .execution_options(populate_existing=True)
    ).all()
    return [
        CriticalItem(
            id=row.id,
            name=row.name,
            unit=row.unit,
            quantity=to_quantity(row.quantity),
            minimum=to_quantity(row.minimum),
        )
        for row in rows
    ]


def count_critical_items(db: Session) -> int:
    return db.scalar(select(func.count(RawMaterial.id)).where(*_critical_condition())) or 0
