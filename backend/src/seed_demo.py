"""
seed_demo.py
============
Loads demo data: a handful of medicines (with aliases), two pharmacies with
their owner chats and inventory, so voice and text searches can be tried end to end.

Usage (inside the container):
    docker exec apteka-backend-1 python /app/src/seed_demo.py
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

_BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_BACKEND_DIR))

import polars as pl
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.apteka import InventoryEntry, Medicine, Pharmacy
from app.services.catalog_service import import_catalog
from app.services.registration import PharmacyPayload, insert_owner, insert_pharmacy

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv(
    "DB_URL",
    "postgresql+asyncpg://apteka_admin:apteka2024@db:5432/apteka",
)

# Owner chat of the first demo pharmacy; the next ones get consecutive ids
DEMO_OWNER_CHAT_ID = int(os.getenv("DEMO_OWNER_CHAT_ID", "1"))

MEDICINES: list[tuple[str, str]] = [
    ("Парацетамол", "Paracetamol; Панадол"),
    ("ТайлолХот", "Тайлол Хот; Tylol Hot"),
    ("Тримол", ""),
    ("Ибупрофен", "Нурофен; Ibuprofen"),
    ("Цитрамон", ""),
    ("Но-шпа", "Дротаверин"),
]

# (name, address, phone, stocked medicines)
PHARMACIES: list[tuple[str, str, str, tuple[str, ...]]] = [
    ("Неман", "ул. Киевская 95", "+996 312 000 001", ("Парацетамол", "ТайлолХот", "Ибупрофен")),
    ("Бишкек Фарм", "пр. Чуй 120", "+996 312 000 002", ("Парацетамол", "Цитрамон")),
]


async def seed_pharmacy(session: AsyncSession, payload: PharmacyPayload, chat_id: int) -> Pharmacy:
    """Pharmacy and its owner, as registration would create them; existing names are kept."""
    existing = (await session.exec(select(Pharmacy).where(Pharmacy.name == payload.name))).first()
    if existing is not None:
        return existing
    pharmacy = await insert_pharmacy(session, payload)
    await insert_owner(session, chat_id, pharmacy.id)
    return pharmacy


async def main() -> None:
    engine = create_async_engine(DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    logger.info("Connecting to %s ...", DATABASE_URL)
    catalog = pl.DataFrame(
        {"name": [name for name, _ in MEDICINES], "aliases": [aliases for _, aliases in MEDICINES]}
    )

    try:
        async with session_factory() as session:
            async with session.begin():
                summary = await import_catalog(session, catalog)
                logger.info("Catalog: %s", summary)

                ids = {
                    row.name: row.id
                    for row in (await session.exec(select(Medicine.id, Medicine.name))).all()
                }
                for offset, (name, address, phone, stocked) in enumerate(PHARMACIES):
                    payload = PharmacyPayload(name=name, address=address, phone=phone)
                    pharmacy = await seed_pharmacy(session, payload, DEMO_OWNER_CHAT_ID + offset)

                    rows = [
                        {"pharmacy_id": pharmacy.id, "medicine_id": ids[medicine]}
                        for medicine in stocked
                        if medicine in ids
                    ]
                    if rows:
                        await session.execute(pg_insert(InventoryEntry).values(rows).on_conflict_do_nothing())
                    logger.info("  + %-15s | %d medicines", name, len(rows))
    finally:
        await engine.dispose()

    logger.info("=== Demo data loaded ===")


if __name__ == "__main__":
    asyncio.run(main())
