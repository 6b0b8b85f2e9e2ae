"""SQLAlchemy database models for the BIM element store."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates
from sqlalchemy.sql import func

from ..exceptions import ValidationError
from ..models import Element

GROUPING_COLUMNS = ("category", "family", "type", "material", "location_type")


class Base(DeclarativeBase):
    """Declarative base class for ORM models."""

    pass


class BimElement(Base):
    """
    Read model of a BIM element.

    The element store is owned by the BIM import pipeline; this library only
    reads from it. The composite grouping index backs server-side pattern
    aggregation.
    """

    __tablename__ = "bim_elements"

    # Primary key (BIGINT on servers, INTEGER on SQLite so it autoincrements)
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True
    )

    # Identity in the source model
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Grouping attributes
    category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    family: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    material: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Descriptive attributes
    spec: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Dimensions in millimetres
    length_mm: Mapped[Optional[float]] = mapped_column(
        Numeric(14, 3, asdecimal=True), nullable=True
    )
    width_mm: Mapped[Optional[float]] = mapped_column(
        Numeric(14, 3, asdecimal=True), nullable=True
    )
    height_mm: Mapped[Optional[float]] = mapped_column(
        Numeric(14, 3, asdecimal=True), nullable=True
    )
    diameter_mm: Mapped[Optional[float]] = mapped_column(
        Numeric(14, 3, asdecimal=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_bim_elements_pattern", *GROUPING_COLUMNS, "id"),
        Index("idx_bim_elements_category", "category"),
        Index("idx_bim_elements_project_id", "project_id"),
    )

    @validates("length_mm", "width_mm", "height_mm", "diameter_mm")
    def validate_dimension(self, key: str, value: Any) -> Any:
        """Dimensions are optional but never negative."""
        if value is not None and value < 0:
            raise ValidationError(
                f"{key} cannot be negative, got {value}", field=key, value=value
            )
        return value

    def to_element(self) -> Element:
        """Convert the row into the library's read-only Element."""
        return Element(
            id=self.id,
            external_id=self.external_id,
            project_id=self.project_id,
            category=self.category,
            family=self.family,
            type=self.type,
            material=self.material,
            location_type=self.location_type,
            spec=self.spec,
            length_mm=self.length_mm,
            width_mm=self.width_mm,
            height_mm=self.height_mm,
            diameter_mm=self.diameter_mm,
            metadata=dict(self.meta_json or {}),
        )

    def __repr__(self) -> str:
        return (
            f"<BimElement(id={self.id}, category='{self.category}', "
            f"family='{self.family}', type='{self.type}')>"
        )
