from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Index, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Medicine(SQLModel, table=True):
    """Canonical medicine.  ``id`` is stable; ``name`` is the display name."""

    __tablename__ = "medicines"
    __table_args__ = (
        Index(
            "ix_medicines_name_normalized_gin",
            "name_normalized",
            postgresql_using="gin",
            postgresql_ops={"name_normalized": "gin_trgm_ops"},
        ),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(PGUUID(as_uuid=True), primary_key=True),
    )
    name: str = Field(sa_column=Column(String, nullable=False, unique=True))
    name_normalized: str = Field(sa_column=Column(String, nullable=False, index=True))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


class MedicineAlias(SQLModel, table=True):
    """Alternative spelling of a medicine.  Aliases are only ever added."""

    __tablename__ = "medicine_aliases"
    __table_args__ = (
        UniqueConstraint("medicine_id", "alias_normalized", name="uq_medicine_alias"),
        Index(
            "ix_medicine_aliases_alias_normalized_gin",
            "alias_normalized",
            postgresql_using="gin",
            postgresql_ops={"alias_normalized": "gin_trgm_ops"},
        ),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(PGUUID(as_uuid=True), primary_key=True),
    )
    medicine_id: UUID = Field(
        sa_column=Column(PGUUID(as_uuid=True), ForeignKey("medicines.id"), nullable=False, index=True)
    )
    alias: str = Field(sa_column=Column(String, nullable=False))
    alias_normalized: str = Field(sa_column=Column(String, nullable=False))


class Pharmacy(SQLModel, table=True):
    __tablename__ = "pharmacies"

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(PGUUID(as_uuid=True), primary_key=True),
    )
    name: str = Field(sa_column=Column(String, nullable=False))
    address: str = Field(sa_column=Column(String, nullable=False))
    phone: str = Field(sa_column=Column(String, nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


class InventoryEntry(SQLModel, table=True):
    """Presence of a medicine in a pharmacy.  No quantity, no price."""

    __tablename__ = "inventory_entries"

    pharmacy_id: UUID = Field(
        sa_column=Column(PGUUID(as_uuid=True), ForeignKey("pharmacies.id"), primary_key=True)
    )
    medicine_id: UUID = Field(
        sa_column=Column(PGUUID(as_uuid=True), ForeignKey("medicines.id"), primary_key=True, index=True)
    )


class PharmacyOwner(SQLModel, table=True):
    """Chat that registered (and owns) a pharmacy.  One owner per pharmacy."""

    __tablename__ = "pharmacy_owners"

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(PGUUID(as_uuid=True), primary_key=True),
    )
    chat_id: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    pharmacy_id: UUID = Field(
        sa_column=Column(PGUUID(as_uuid=True), ForeignKey("pharmacies.id"), nullable=False, unique=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


class CatalogImport(SQLModel, table=True):
    __tablename__ = "catalog_imports"

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(PGUUID(as_uuid=True), primary_key=True),
    )
    filename: str = Field(sa_column=Column(String, nullable=False))
    status: ImportStatus = Field(default=ImportStatus.PENDING, sa_column=Column(String, nullable=False))
    error_log: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
