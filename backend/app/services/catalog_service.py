"""Medicine catalog import.

Reads a CSV / TSV / Excel file with one medicine per row and an optional
``;``-separated alias column, normalizes names with the shared normalizer
and writes them without ever rewriting an existing medicine:

  - a name whose normalized key already exists keeps its id and name;
  - new names are inserted (``ON CONFLICT DO NOTHING`` on ``name``);
  - aliases are only added (``ON CONFLICT DO NOTHING`` on
    ``uq_medicine_alias``).
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import polars as pl
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.apteka import Medicine, MedicineAlias
from app.services.normalizer import normalize_dataframe_column, normalize_medicine_name

logger = logging.getLogger(__name__)

NAME_COLUMNS = ("name", "Name", "название", "Название", "nombre", "medicine")
ALIAS_COLUMNS = ("aliases", "Aliases", "alias", "синонимы", "Синонимы")
ALIAS_SEPARATOR = ";"
BATCH_SIZE = 1000


def _pick_existing_column(columns: list[str], candidates: tuple[str, ...]) -> str | None:
    for candidate in candidates:
        if candidate in columns:
            return candidate
    return None


def read_catalog_file(file_path: str) -> pl.DataFrame:
    path = Path(file_path)
    suffix = path.suffix.lower()
    if suffix in {".xlsx", ".xls"}:
        return pl.read_excel(path)
    if suffix in {".tsv", ".txt"}:
        return pl.read_csv(path, separator="\t", infer_schema_length=0)
    return pl.read_csv(path, infer_schema_length=0)


def prepare_catalog(dataframe: pl.DataFrame) -> pl.DataFrame:
    """
    Return a frame with ``name``, ``name_normalized`` and ``aliases``
    (``list[str]``), one row per distinct normalized name.
    """
    name_column = _pick_existing_column(dataframe.columns, NAME_COLUMNS)
    if name_column is None:
        raise ValueError(f"Catalog file has no name column (expected one of {NAME_COLUMNS})")
    alias_column = _pick_existing_column(dataframe.columns, ALIAS_COLUMNS)

    alias_expr = (
        pl.col(alias_column).cast(pl.Utf8).fill_null("")
        if alias_column
        else pl.lit("")
    )
    prepared = dataframe.select(
        pl.col(name_column).cast(pl.Utf8).str.strip_chars().alias("name"),
        alias_expr.alias("aliases_raw"),
    ).filter(pl.col("name").is_not_null() & (pl.col("name") != ""))

    prepared = normalize_dataframe_column(prepared, "name")
    prepared = prepared.filter(pl.col("name_normalized") != "")
    prepared = prepared.with_columns(
        pl.col("aliases_raw")
        .str.split(ALIAS_SEPARATOR)
        .list.eval(pl.element().str.strip_chars())
        .list.eval(pl.element().filter(pl.element() != ""))
        .alias("aliases")
    ).drop("aliases_raw")

    return prepared.unique(subset=["name_normalized"], keep="first", maintain_order=True)


def build_medicine_insert(rows: list[dict[str, Any]]):
    statement = pg_insert(Medicine).values(rows)
    return statement.on_conflict_do_nothing(index_elements=["name"])


def build_alias_insert(rows: list[dict[str, Any]]):
    statement = pg_insert(MedicineAlias).values(rows)
    return statement.on_conflict_do_nothing(constraint="uq_medicine_alias")


def build_alias_rows(
    catalog_rows: list[dict[str, Any]],
    ids_by_key: dict[str, UUID],
) -> list[dict[str, Any]]:
    """Alias rows for known medicines, skipping aliases equal to the name key."""
    alias_rows: list[dict[str, Any]] = []
    for row in catalog_rows:
        medicine_id = ids_by_key.get(row["name_normalized"])
        if medicine_id is None:
            continue
        seen = {row["name_normalized"]}
        for alias in row["aliases"] or []:
            alias_normalized = normalize_medicine_name(alias)
            if not alias_normalized or alias_normalized in seen:
                continue
            seen.add(alias_normalized)
            alias_rows.append(
                {
                    "id": uuid4(),
                    "medicine_id": medicine_id,
                    "alias": alias,
                    "alias_normalized": alias_normalized,
                }
            )
    return alias_rows


async def _ids_by_key(session: AsyncSession, keys: list[str]) -> dict[str, UUID]:
    ids: dict[str, UUID] = {}
    for start in range(0, len(keys), BATCH_SIZE):
        chunk = keys[start:start + BATCH_SIZE]
        statement = (
            select(Medicine.id, Medicine.name_normalized)
            .where(Medicine.name_normalized.in_(chunk))
            .order_by(Medicine.created_at.asc())
        )
        for row in (await session.exec(statement)).all():
            ids.setdefault(row.name_normalized, row.id)
    return ids


async def import_catalog(session: AsyncSession, dataframe: pl.DataFrame) -> dict[str, int]:
    """Insert new medicines and aliases from *dataframe*.  Caller commits."""
    catalog_rows = prepare_catalog(dataframe).to_dicts()
    keys = [row["name_normalized"] for row in catalog_rows]

    existing = await _ids_by_key(session, keys)
    new_rows = [
        {"id": uuid4(), "name": row["name"], "name_normalized": row["name_normalized"]}
        for row in catalog_rows
        if row["name_normalized"] not in existing
    ]
    for start in range(0, len(new_rows), BATCH_SIZE):
        await session.execute(build_medicine_insert(new_rows[start:start + BATCH_SIZE]))

    ids_by_key = await _ids_by_key(session, keys)
    alias_rows = build_alias_rows(catalog_rows, ids_by_key)
    for start in range(0, len(alias_rows), BATCH_SIZE):
        await session.execute(build_alias_insert(alias_rows[start:start + BATCH_SIZE]))

    summary = {
        "rows": len(catalog_rows),
        "existing": len(existing),
        "inserted": len(new_rows),
        "aliases": len(alias_rows),
    }
    logger.info("Catalog import: %s", summary)
    return summary
