"""Pharmacy registration.

The web-app form submits JSON (name, address, phone).  The payload is
validated with pydantic, then the pharmacy row and its owner row are
written as one unit of work: either both exist afterwards or neither does.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.db import AsyncSessionLocal, run_in_transaction
from app.core.errors import ValidationFailure
from app.models.apteka import Pharmacy, PharmacyOwner

logger = logging.getLogger(__name__)

_PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9\s()\-]{4,30}$")


class PharmacyPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1, max_length=300)
    phone: str = Field(min_length=5, max_length=32)

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        if not _PHONE_PATTERN.match(value):
            raise ValueError("phone must contain digits, spaces, dashes or parentheses")
        return value


def parse_pharmacy_payload(raw: Union[str, bytes, dict[str, Any]]) -> PharmacyPayload:
    """Validate web-app data; raises :class:`ValidationFailure` on bad input."""
    try:
        if isinstance(raw, dict):
            return PharmacyPayload.model_validate(raw)
        return PharmacyPayload.model_validate_json(raw)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        logger.info("Rejected pharmacy payload: %d field errors", len(errors))
        raise ValidationFailure("Invalid pharmacy payload", errors=errors) from exc


async def insert_pharmacy(session: AsyncSession, payload: PharmacyPayload) -> Pharmacy:
    pharmacy = Pharmacy(name=payload.name, address=payload.address, phone=payload.phone)
    session.add(pharmacy)
    await session.flush()
    return pharmacy


async def insert_owner(session: AsyncSession, chat_id: int, pharmacy_id: UUID) -> PharmacyOwner:
    owner = PharmacyOwner(chat_id=chat_id, pharmacy_id=pharmacy_id)
    session.add(owner)
    await session.flush()
    return owner


async def register_pharmacy(
    payload: PharmacyPayload,
    chat_id: int,
    *,
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
) -> UUID:
    """
    Create the pharmacy and its owner atomically and return the new
    pharmacy id.

    Any failure rolls back both writes; database errors surface as
    :class:`~app.core.errors.PersistenceFailure`.
    """

    async def _work(session: AsyncSession) -> UUID:
        pharmacy = await insert_pharmacy(session, payload)
        await insert_owner(session, chat_id, pharmacy.id)
        return pharmacy.id

    pharmacy_id = await run_in_transaction(session_factory, _work)
    logger.info("[ChatId=%d] Pharmacy %s registered", chat_id, pharmacy_id)
    return pharmacy_id
