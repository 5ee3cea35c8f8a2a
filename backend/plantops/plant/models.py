from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Session, SQLModel, select


class PlantUnit(SQLModel, table=True):
    """A unit (mill, kiln, packer...) inside a plant category."""

    __tablename__ = "plant_units"
    __table_args__ = (UniqueConstraint("category", "unit", name="uq_plant_units_category_unit"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    category: str = Field(index=True, max_length=128)
    unit: str = Field(max_length=128)
    description: Optional[str] = Field(default=None, max_length=256)


def list_plant_unit_pairs(session: Session) -> List[Tuple[str, str]]:
    """Return (category, unit) pairs in a stable order."""
    rows = session.exec(select(PlantUnit).order_by(PlantUnit.category, PlantUnit.unit)).all()
    return [(row.category, row.unit) for row in rows]


def ensure_plant_units(session: Session, pairs: Iterable[Tuple[str, str]]) -> int:
    """Insert the missing (category, unit) pairs; idempotent. Returns how many were added."""
    existing = set(list_plant_unit_pairs(session))
    created = 0
    for category, unit in pairs:
        key = (category.strip(), unit.strip())
        if not key[0] or not key[1] or key in existing:
            continue
        session.add(PlantUnit(category=key[0], unit=key[1]))
        existing.add(key)
        created += 1
    session.commit()
    return created
