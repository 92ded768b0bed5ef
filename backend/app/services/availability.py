from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.apteka import InventoryEntry, Medicine, Pharmacy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PharmacyInfo:
    id: UUID
    name: str
    address: str
    phone: str


@dataclass(frozen=True)
class AvailabilityGroup:
    """One pharmacy and the canonical names of the queried medicines it stocks."""

    pharmacy: PharmacyInfo
    medicine_names: tuple[str, ...]

    @property
    def match_count(self) -> int:
        return len(self.medicine_names)


def build_availability_statement(medicine_ids: Sequence[UUID]):
    return (
        select(
            Pharmacy.id,
            Pharmacy.name,
            Pharmacy.address,
            Pharmacy.phone,
            Medicine.id.label("medicine_id"),
            Medicine.name.label("medicine_name"),
        )
        .select_from(InventoryEntry)
        .join(Pharmacy, Pharmacy.id == InventoryEntry.pharmacy_id)
        .join(Medicine, Medicine.id == InventoryEntry.medicine_id)
        .where(InventoryEntry.medicine_id.in_(list(medicine_ids)))
    )


def group_availability(rows: Iterable, medicine_order: Sequence[UUID]) -> list[AvailabilityGroup]:
    """
    Group inventory rows by pharmacy.

    Names inside a group follow *medicine_order* (the order in which the
    query resolved them).  Pharmacies without a matching row never appear.
    """
    position = {medicine_id: idx for idx, medicine_id in enumerate(medicine_order)}
    pharmacies: dict[UUID, PharmacyInfo] = {}
    stocked: dict[UUID, dict[UUID, str]] = {}

    for row in rows:
        if row.medicine_id not in position:
            continue
        pharmacies.setdefault(
            row.id,
            PharmacyInfo(id=row.id, name=row.name, address=row.address, phone=row.phone),
        )
        stocked.setdefault(row.id, {})[row.medicine_id] = row.medicine_name

    groups: list[AvailabilityGroup] = []
    for pharmacy_id, medicines in stocked.items():
        if not medicines:
            continue
        ordered = sorted(medicines.items(), key=lambda item: position[item[0]])
        groups.append(
            AvailabilityGroup(
                pharmacy=pharmacies[pharmacy_id],
                medicine_names=tuple(name for _, name in ordered),
            )
        )
    return groups


async def aggregate_availability(
    session: AsyncSession,
    medicine_ids: Sequence[UUID],
) -> list[AvailabilityGroup]:
    """Pharmacy groups for *medicine_ids*, read inside the caller's transaction."""
    if not medicine_ids:
        raise ValueError("aggregate_availability requires at least one medicine id")
    rows = (await session.exec(build_availability_statement(medicine_ids))).all()
    groups = group_availability(rows, medicine_ids)
    logger.info("%d inventory rows grouped into %d pharmacies", len(rows), len(groups))
    return groups


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def collation_key(name: str) -> tuple[str, str]:
    """
    Case-insensitive key with "ё" sorting together with "е" and only
    breaking ties after it.

    No locale collation is applied: letters compare by code point, so
    Latin names sort before Cyrillic ones and other accented letters are
    not folded.
    """
    folded = name.casefold()
    return folded.replace("ё", "е"), folded


def _rank_key(group: AvailabilityGroup) -> tuple:
    pharmacy = group.pharmacy
    return (-group.match_count, collation_key(pharmacy.name), pharmacy.name, str(pharmacy.id))


def rank_groups(groups: Iterable[AvailabilityGroup]) -> list[AvailabilityGroup]:
    """Most matched medicines first, then pharmacy name ascending."""
    return sorted(groups, key=_rank_key)
