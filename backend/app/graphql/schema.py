from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Optional
from uuid import UUID

import strawberry
from strawberry.file_uploads import Upload
from sqlmodel import select

from app.core.db import AsyncSessionLocal
from app.core.errors import InputTooLarge, PersistenceFailure, ValidationFailure
from app.models.apteka import CatalogImport, ImportStatus
from app.services.messages import TEXT_GENERIC_FAILURE, TEXT_PHARMACY_CREATED, TEXT_TOO_LONG_QUERY, outcome_messages
from app.services.registration import parse_pharmacy_payload, register_pharmacy
from app.services.search import SearchOutcome, search_pharmacies
from app.worker.tasks import UPLOAD_DIR, task_import_catalog

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


@strawberry.type
class TokenMatchNode:
    token: str
    normalized: str
    medicine_id: Optional[strawberry.ID]
    medicine_name: Optional[str]
    score: float


@strawberry.type
class PharmacyGroupNode:
    pharmacy_id: strawberry.ID
    name: str
    address: str
    phone: str
    medicine_names: list[str]
    message: str


@strawberry.type
class SearchResultNode:
    status: str
    query_text: str
    matches: list[TokenMatchNode]
    groups: list[PharmacyGroupNode]
    messages: list[str]


@strawberry.type
class RegistrationResultNode:
    ok: bool
    pharmacy_id: Optional[strawberry.ID]
    message: str
    errors: Optional[str] = None  # JSON-encoded list of field errors


@strawberry.type
class CatalogImportNode:
    id: strawberry.ID
    filename: str
    status: str


def _outcome_to_node(outcome: SearchOutcome) -> SearchResultNode:
    messages = outcome_messages(outcome)
    return SearchResultNode(
        status=outcome.status.value,
        query_text=outcome.query_text,
        matches=[
            TokenMatchNode(
                token=match.raw,
                normalized=match.normalized,
                medicine_id=strawberry.ID(str(match.medicine_id)) if match.medicine_id else None,
                medicine_name=match.medicine_name,
                score=round(match.score, 4),
            )
            for match in outcome.resolution.matches
        ],
        groups=[
            PharmacyGroupNode(
                pharmacy_id=strawberry.ID(str(group.pharmacy.id)),
                name=group.pharmacy.name,
                address=group.pharmacy.address,
                phone=group.pharmacy.phone,
                medicine_names=list(group.medicine_names),
                message=message,
            )
            for group, message in zip(outcome.groups, messages)
        ],
        messages=messages,
    )


def _import_to_node(catalog_import: CatalogImport) -> CatalogImportNode:
    status = catalog_import.status.value if isinstance(catalog_import.status, ImportStatus) else str(catalog_import.status)
    return CatalogImportNode(id=strawberry.ID(str(catalog_import.id)), filename=catalog_import.filename, status=status)


@strawberry.type
class Query:
    @strawberry.field
    async def search_pharmacies(self, text: str) -> SearchResultNode:
        try:
            outcome = await search_pharmacies(text)
        except InputTooLarge as exc:
            raise ValueError(TEXT_TOO_LONG_QUERY) from exc
        except PersistenceFailure as exc:
            raise ValueError(TEXT_GENERIC_FAILURE) from exc
        return _outcome_to_node(outcome)

    @strawberry.field
    async def catalog_import(self, id: strawberry.ID) -> Optional[CatalogImportNode]:
        try:
            import_id = UUID(str(id))
        except ValueError:
            return None
        async with AsyncSessionLocal() as session:
            catalog_import = (
                await session.exec(select(CatalogImport).where(CatalogImport.id == import_id))
            ).first()
            if catalog_import is None:
                return None
            return _import_to_node(catalog_import)


async def _store_upload(file: Upload, max_size_bytes: int = MAX_UPLOAD_BYTES) -> tuple[CatalogImport, Path]:
    current_offset = file.file.tell()
    file.file.seek(0, 2)
    if file.file.tell() > max_size_bytes:
        file.file.seek(current_offset)
        raise ValueError("File exceeds the maximum allowed size (10MB).")
    file.file.seek(current_offset)

    incoming_name = (file.filename or "").replace("\0", "").strip()
    base_name = incoming_name.split("/")[-1].split("\\")[-1]
    if base_name in {"", ".", ".."}:
        base_name = "upload.bin"

    stem, dot, extension = base_name.rpartition(".")
    if not dot:
        stem, extension = base_name, ""

    safe_stem = re.sub(r"[^a-zA-Z0-9_-]", "_", stem) or "upload"
    safe_extension = re.sub(r"[^a-zA-Z0-9]", "", extension)
    filename = f"{safe_stem}.{safe_extension}" if safe_extension else safe_stem
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

    async with AsyncSessionLocal() as session:
        catalog_import = CatalogImport(filename=filename, status=ImportStatus.PENDING)
        session.add(catalog_import)
        await session.commit()
        await session.refresh(catalog_import)

    stored_path = UPLOAD_DIR / f"{catalog_import.id}_{filename}"
    file.file.seek(0)
    with stored_path.open("wb") as output_file:
        output_file.write(file.file.read())

    return catalog_import, stored_path


@strawberry.type
class Mutation:
    @strawberry.mutation
    async def register_pharmacy(
        self,
        chat_id: strawberry.ID,
        name: str,
        address: str,
        phone: str,
    ) -> RegistrationResultNode:
        try:
            owner_chat_id = int(str(chat_id))
        except ValueError:
            return RegistrationResultNode(ok=False, pharmacy_id=None, message="chat_id must be an integer")

        try:
            payload = parse_pharmacy_payload({"name": name, "address": address, "phone": phone})
            pharmacy_id = await register_pharmacy(payload, owner_chat_id)
        except ValidationFailure as exc:
            return RegistrationResultNode(
                ok=False,
                pharmacy_id=None,
                message=TEXT_GENERIC_FAILURE,
                errors=json.dumps(exc.errors, ensure_ascii=False, default=str),
            )
        except PersistenceFailure:
            return RegistrationResultNode(ok=False, pharmacy_id=None, message=TEXT_GENERIC_FAILURE)

        return RegistrationResultNode(
            ok=True,
            pharmacy_id=strawberry.ID(str(pharmacy_id)),
            message=TEXT_PHARMACY_CREATED,
        )

    @strawberry.mutation
    async def import_catalog(self, file: Upload) -> CatalogImportNode:
        catalog_import, stored_path = await _store_upload(file)
        task_import_catalog.delay(str(catalog_import.id), str(stored_path))
        return _import_to_node(catalog_import)


schema = strawberry.Schema(query=Query, mutation=Mutation)
