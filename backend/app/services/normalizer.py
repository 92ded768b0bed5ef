"""Medicine name normalization.

Names reach the resolver from speech transcription and from hand-typed
catalog files, so the same medicine shows up as:
  - "Парацетамол", "  парацетамол ", "ПАРАЦЕТАМОЛ."
  - "Тайлол-Хот", "ТайлолХот", "тайлол хот"
  - "Ёлка", "Елка" (ё is not reliable in transcripts)

``normalize_medicine_name`` produces the matching key used on both sides of
the comparison (catalog and query).  It is deterministic and idempotent.
``normalize_series`` / ``normalize_dataframe_column`` apply it to Polars
columns when a catalog file is imported.
"""
from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

import polars as pl

# ---------------------------------------------------------------------------
# Compiled regex patterns – evaluated once at import time
# ---------------------------------------------------------------------------

# Anything that is not a letter or a digit carries no lexical weight
_NON_WORD = re.compile(r"[\W_]+")

# Digit–letter and letter–digit boundaries (e.g. "500мг" → "500 мг")
_DIG_LETTER = re.compile(r"(\d)([^\W\d_])")
_LETTER_DIG = re.compile(r"([^\W\d_])(\d)")

_WHITESPACE = re.compile(r"\s+")

# "й" is a letter of its own, not "и" with a diacritic
_KEPT_MARKS = frozenset("\u0306")

# Separators a transcription uses between medicine names
_QUERY_SEPARATORS = re.compile(r"[,;\n]+")


def normalize_medicine_name(text: str | None) -> str:
    """
    Apply deterministic normalization to a single medicine name.

    Pipeline:
      1. Unicode NFKD, then casefold.  Compatibility characters decompose
         first ("ℌ" → "H", "Ⅻ" → "XII") so they are folded too
      2. Drop combining marks ("ё" → "е", "é" → "e"); "й" is recomposed
         and kept
      3. Replace punctuation and symbols with spaces
      4. Insert a space between digit/letter boundaries
      5. Collapse whitespace and trim

    Returns the normalized key, or ``""`` for empty input.
    """
    if not text or not text.strip():
        return ""

    # 1-2. Decompose, casefold, strip diacritics
    folded = unicodedata.normalize("NFKD", unicodedata.normalize("NFKD", text).casefold())
    folded = "".join(ch for ch in folded if ch in _KEPT_MARKS or not unicodedata.combining(ch))
    folded = unicodedata.normalize("NFC", folded)

    # 3. Remove non-alphanumeric (keep spaces)
    folded = _NON_WORD.sub(" ", folded)

    # 4. Space between digits and letters
    folded = _DIG_LETTER.sub(r"\1 \2", folded)
    folded = _LETTER_DIG.sub(r"\1 \2", folded)

    # 5. Collapse whitespace
    return _WHITESPACE.sub(" ", folded).strip()


def split_query(text: str | None) -> list[str]:
    """Split a transcribed query into raw medicine tokens (comma separated)."""
    if not text:
        return []
    return [part.strip() for part in _QUERY_SEPARATORS.split(text) if part.strip()]


def normalize_tokens(tokens: Iterable[str]) -> list[tuple[str, str]]:
    """
    Return ``(raw, normalized)`` pairs in input order.

    Tokens that normalize to ``""`` are dropped so they never reach the
    resolver.
    """
    pairs: list[tuple[str, str]] = []
    for raw in tokens:
        normalized = normalize_medicine_name(raw)
        if normalized:
            pairs.append((raw, normalized))
    return pairs


def normalize_series(series: pl.Series) -> pl.Series:
    """
    Apply ``normalize_medicine_name`` to a Polars :class:`~polars.Series` of
    strings.

    Returns a new ``Utf8`` Series with normalized values (``None`` → ``""``).
    """
    filled = series.cast(pl.Utf8).fill_null("")
    return filled.map_elements(
        normalize_medicine_name,
        return_dtype=pl.Utf8,
    )


def normalize_dataframe_column(df: pl.DataFrame, col: str) -> pl.DataFrame:
    """
    Return *df* with an additional column ``<col>_normalized`` containing
    the normalized values of *col*.
    """
    normalized = normalize_series(df[col])
    return df.with_columns(normalized.alias(f"{col}_normalized"))
