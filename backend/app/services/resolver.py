"""Medicine resolver: noisy token → canonical medicine.

Query tokens come from speech transcription ("парацетомол" for
"Парацетамол"), so an exact lookup is not enough.  Resolution runs in two
stages:

    SQL     pg_trgm candidate retrieval on the normalized name and alias
            columns (GIN indexes).  Keys without an exact hit are also
            scored against every name whose length can still reach the
            threshold, so the trigram floor and LIMIT only speed up the
            common case.
    Python  normalized Levenshtein similarity ∈ [0, 1] against every name
            and alias of each candidate.  The best candidate is accepted
            only when ``score >= threshold``.

Ties break by shorter canonical name, then canonical name, then id, so the
same query always resolves the same way.
"""
from __future__ import annotations

import logging
import math
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.apteka import Medicine, MedicineAlias

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

#: Minimum similarity for a token to resolve to a medicine (τ).
MATCH_THRESHOLD: float = float(os.getenv("MEDICINE_MATCH_THRESHOLD", "0.8"))

#: pg_trgm similarity floor for the SQL candidate stage.
CANDIDATE_FLOOR: float = float(os.getenv("MEDICINE_CANDIDATE_FLOOR", "0.3"))

#: Maximum candidate rows retrieved per token.
CANDIDATE_LIMIT: int = int(os.getenv("MEDICINE_CANDIDATE_LIMIT", "20"))


@dataclass(frozen=True)
class MedicineCandidate:
    id: UUID
    name: str
    keys: tuple[str, ...]
    """Normalized canonical name followed by normalized aliases."""


@dataclass(frozen=True)
class TokenMatch:
    raw: str
    normalized: str
    medicine_id: Optional[UUID] = None
    medicine_name: Optional[str] = None
    score: float = 0.0

    @property
    def resolved(self) -> bool:
        return self.medicine_id is not None


@dataclass
class Resolution:
    """Per-token match map plus the deduplicated set of resolved ids."""

    matches: list[TokenMatch] = field(default_factory=list)

    @property
    def medicine_ids(self) -> list[UUID]:
        """Resolved ids in first-seen order, without duplicates."""
        seen: dict[UUID, None] = {}
        for match in self.matches:
            if match.medicine_id is not None:
                seen.setdefault(match.medicine_id, None)
        return list(seen)

    @property
    def unresolved(self) -> list[str]:
        return [match.raw for match in self.matches if not match.resolved]

    def by_token(self) -> dict[str, Optional[UUID]]:
        return {match.raw: match.medicine_id for match in self.matches}


def validate_threshold(threshold: float) -> float:
    if not 0.0 < threshold <= 1.0:
        raise ValueError(f"threshold must be in (0, 1], got {threshold!r}")
    return threshold


def similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity; 1.0 means identical keys."""
    return Levenshtein.normalized_similarity(a, b)


def score_candidate(key: str, candidate: MedicineCandidate) -> float:
    return max((similarity(key, candidate_key) for candidate_key in candidate.keys), default=0.0)


def _tie_break(score: float, candidate: MedicineCandidate) -> tuple:
    return (-score, len(candidate.name), candidate.name, str(candidate.id))


def pick_best(
    key: str,
    candidates: Iterable[MedicineCandidate],
    threshold: float,
) -> tuple[Optional[MedicineCandidate], float]:
    """
    Return ``(candidate, score)`` for the best-scoring candidate, or
    ``(None, best_score)`` when nothing reaches *threshold*.
    """
    best: Optional[MedicineCandidate] = None
    best_rank: Optional[tuple] = None
    best_score = 0.0

    for candidate in candidates:
        score = score_candidate(key, candidate)
        rank = _tie_break(score, candidate)
        if best_rank is None or rank < best_rank:
            best, best_rank, best_score = candidate, rank, score

    if best is None or best_score < threshold:
        return None, best_score
    return best, best_score


def resolve_tokens(
    pairs: Sequence[tuple[str, str]],
    candidates: Iterable[MedicineCandidate],
    threshold: float = MATCH_THRESHOLD,
) -> Resolution:
    """Resolve ``(raw, normalized)`` pairs against an in-memory candidate set."""
    validate_threshold(threshold)
    pool = list(candidates)
    matches: list[TokenMatch] = []

    for raw, key in pairs:
        best, score = pick_best(key, pool, threshold)
        if best is None:
            logger.debug("Token %r unresolved (best score %.3f < %.3f)", raw, score, threshold)
            matches.append(TokenMatch(raw=raw, normalized=key, score=score))
            continue
        matches.append(
            TokenMatch(
                raw=raw,
                normalized=key,
                medicine_id=best.id,
                medicine_name=best.name,
                score=score,
            )
        )

    return Resolution(matches=matches)


# ---------------------------------------------------------------------------
# SQL candidate stage
# ---------------------------------------------------------------------------

def build_trigram_floor_statement(floor: float = CANDIDATE_FLOOR):
    """``set_config`` scoped to the current transaction (``is_local=true``)."""
    return select(func.set_config("pg_trgm.similarity_threshold", str(floor), True))


def _candidate_columns():
    return select(
        Medicine.id,
        Medicine.name,
        Medicine.name_normalized,
        MedicineAlias.alias_normalized,
    ).outerjoin(MedicineAlias, MedicineAlias.medicine_id == Medicine.id)


def build_candidate_statement(key: str, limit: int = CANDIDATE_LIMIT):
    """
    Candidate rows for one normalized key: medicines whose normalized name
    or any alias is trigram-similar (``%`` operator, GIN index scan) or
    equal to *key*.  One row per (medicine, alias).
    """
    name_score = func.similarity(Medicine.name_normalized, key)
    alias_score = func.coalesce(func.similarity(MedicineAlias.alias_normalized, key), 0.0)

    return (
        _candidate_columns()
        .where(
            or_(
                Medicine.name_normalized == key,
                Medicine.name_normalized.op("%")(key),
                MedicineAlias.alias_normalized.op("%")(key),
            )
        )
        .order_by(func.greatest(name_score, alias_score).desc(), Medicine.name.asc())
        .limit(limit)
    )


def length_window(key_length: int, threshold: float) -> tuple[int, int]:
    """
    Lengths a key may have and still score ``>= threshold`` against a key of
    *key_length* characters.

    Normalized Levenshtein similarity is ``1 - d / max(n, m)`` and
    ``d >= |n - m|``, so a match needs ``threshold * n <= m <= n / threshold``.
    """
    validate_threshold(threshold)
    return math.floor(key_length * threshold), math.ceil(key_length / threshold)


def build_length_window_statement(keys: Sequence[str], threshold: float):
    """
    Every (medicine, alias) row whose name or alias length falls inside the
    length window of at least one key.  This is a superset of all rows that
    can reach *threshold*, whatever their trigram similarity.
    """
    windows = [length_window(len(key), threshold) for key in keys]
    low = min(lo for lo, _ in windows)
    high = max(hi for _, hi in windows)
    name_length = func.char_length(Medicine.name_normalized)
    alias_length = func.char_length(MedicineAlias.alias_normalized)
    return (
        _candidate_columns()
        .where(or_(name_length.between(low, high), alias_length.between(low, high)))
        .order_by(Medicine.name.asc())
    )


def collect_candidates(rows: Iterable) -> list[MedicineCandidate]:
    """Fold (medicine, alias) rows into one candidate per medicine."""
    names: dict[UUID, str] = {}
    keys: dict[UUID, list[str]] = {}
    for row in rows:
        medicine_keys = keys.setdefault(row.id, [row.name_normalized])
        names[row.id] = row.name
        if row.alias_normalized and row.alias_normalized not in medicine_keys:
            medicine_keys.append(row.alias_normalized)
    return [MedicineCandidate(id=mid, name=names[mid], keys=tuple(keys[mid])) for mid in names]


def merge_candidates(*pools: Iterable[MedicineCandidate]) -> list[MedicineCandidate]:
    """Union of candidate pools; keys of the same medicine are combined."""
    merged: dict[UUID, MedicineCandidate] = {}
    for pool in pools:
        for candidate in pool:
            known = merged.get(candidate.id)
            if known is None:
                merged[candidate.id] = candidate
                continue
            keys = known.keys + tuple(key for key in candidate.keys if key not in known.keys)
            merged[candidate.id] = MedicineCandidate(id=known.id, name=known.name, keys=keys)
    return list(merged.values())


async def fetch_medicine_candidates(
    session: AsyncSession,
    keys: Iterable[str],
    limit: int = CANDIDATE_LIMIT,
) -> list[MedicineCandidate]:
    """Retrieve the union of trigram candidates for every key in the current transaction."""
    await session.exec(build_trigram_floor_statement())
    rows: list = []
    for key in dict.fromkeys(keys):
        rows.extend((await session.exec(build_candidate_statement(key, limit))).all())
    return collect_candidates(rows)


async def fetch_length_window_candidates(
    session: AsyncSession,
    keys: Sequence[str],
    threshold: float,
) -> list[MedicineCandidate]:
    """Every medicine that could reach *threshold* for one of *keys*."""
    if not keys:
        return []
    rows = (await session.exec(build_length_window_statement(keys, threshold))).all()
    return collect_candidates(rows)


async def resolve_medicines(
    session: AsyncSession,
    pairs: Sequence[tuple[str, str]],
    threshold: float = MATCH_THRESHOLD,
) -> Resolution:
    """
    Resolve normalized query tokens inside the caller's transaction.

    The trigram stage settles exact keys.  Any other key is re-scored
    against the length-window superset, so the trigram floor and limit
    never hide a candidate that reaches *threshold*.
    """
    validate_threshold(threshold)
    if not pairs:
        return Resolution()
    keys = list(dict.fromkeys(key for _, key in pairs))
    candidates = await fetch_medicine_candidates(session, keys)

    unsettled = [key for key in keys if pick_best(key, candidates, 1.0)[0] is None]
    if unsettled:
        window = await fetch_length_window_candidates(session, unsettled, threshold)
        candidates = merge_candidates(candidates, window)

    resolution = resolve_tokens(pairs, candidates, threshold)
    logger.info(
        "Resolved %d/%d tokens against %d candidates (%d keys re-scored by length window)",
        len(pairs) - len(resolution.unresolved), len(pairs), len(candidates), len(unsettled),
    )
    return resolution
