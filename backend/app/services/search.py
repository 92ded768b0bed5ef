from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.db import SEARCH_ISOLATION_LEVEL, AsyncSessionLocal, run_in_transaction
from app.core.errors import InputTooLarge
from app.services.availability import AvailabilityGroup, aggregate_availability, rank_groups
from app.services.normalizer import normalize_tokens, split_query
from app.services.resolver import MATCH_THRESHOLD, Resolution, resolve_medicines, validate_threshold

logger = logging.getLogger(__name__)

MAX_QUERY_CHARS = int(os.getenv("MAX_QUERY_CHARS", "500"))
MAX_QUERY_TOKENS = int(os.getenv("MAX_QUERY_TOKENS", "10"))


class SearchStatus(str, Enum):
    FOUND = "FOUND"
    NO_RESOLVED_MEDICINES = "NO_RESOLVED_MEDICINES"
    NO_AVAILABILITY = "NO_AVAILABILITY"


@dataclass
class SearchOutcome:
    status: SearchStatus
    query_text: str
    """Original raw query, echoed back for user feedback."""
    resolution: Resolution = field(default_factory=Resolution)
    groups: list[AvailabilityGroup] = field(default_factory=list)


def prepare_query(query: Union[str, Sequence[str]]) -> tuple[str, list[tuple[str, str]]]:
    """
    Bound-check and normalize a query.

    Returns the raw text to echo and the ``(raw, normalized)`` token pairs.
    Raises :class:`InputTooLarge` before any matching work happens.
    """
    if isinstance(query, str):
        raw_text = query
        tokens = split_query(query)
    else:
        tokens = [token for token in query if token and token.strip()]
        raw_text = ", ".join(token.strip() for token in tokens)

    if len(raw_text) > MAX_QUERY_CHARS:
        raise InputTooLarge(
            f"Query is {len(raw_text)} characters long (max {MAX_QUERY_CHARS})",
            limit=MAX_QUERY_CHARS,
            actual=len(raw_text),
        )
    if len(tokens) > MAX_QUERY_TOKENS:
        raise InputTooLarge(
            f"Query has {len(tokens)} names (max {MAX_QUERY_TOKENS})",
            limit=MAX_QUERY_TOKENS,
            actual=len(tokens),
        )
    return raw_text, normalize_tokens(tokens)


async def search_pharmacies(
    query: Union[str, Sequence[str]],
    *,
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
    threshold: float = MATCH_THRESHOLD,
) -> SearchOutcome:
    """
    Resolve *query* and return ranked pharmacy availability.

    Resolution and aggregation share one read-only REPEATABLE READ
    transaction; ranking happens after it has committed.
    """
    validate_threshold(threshold)
    raw_text, pairs = prepare_query(query)
    if not pairs:
        return SearchOutcome(status=SearchStatus.NO_RESOLVED_MEDICINES, query_text=raw_text)

    async def _work(session: AsyncSession) -> tuple[Resolution, list[AvailabilityGroup]]:
        resolution = await resolve_medicines(session, pairs, threshold)
        if not resolution.medicine_ids:
            return resolution, []
        return resolution, await aggregate_availability(session, resolution.medicine_ids)

    resolution, groups = await run_in_transaction(
        session_factory,
        _work,
        isolation_level=SEARCH_ISOLATION_LEVEL,
        read_only=True,
    )

    if not resolution.medicine_ids:
        logger.info("No medicine resolved for query %r", raw_text)
        return SearchOutcome(
            status=SearchStatus.NO_RESOLVED_MEDICINES,
            query_text=raw_text,
            resolution=resolution,
        )
    if not groups:
        logger.info("No pharmacy stocks %d resolved medicines", len(resolution.medicine_ids))
        return SearchOutcome(
            status=SearchStatus.NO_AVAILABILITY,
            query_text=raw_text,
            resolution=resolution,
        )
    return SearchOutcome(
        status=SearchStatus.FOUND,
        query_text=raw_text,
        resolution=resolution,
        groups=rank_groups(groups),
    )
