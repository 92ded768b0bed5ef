from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from typing import Optional

import openai
from openai import AsyncOpenAI
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.db import AsyncSessionLocal, run_in_transaction
from app.core.errors import TranscriptionFailure
from app.models.apteka import Medicine

logger = logging.getLogger(__name__)

WHISPER_MODEL = os.getenv("WHISPER_MODEL", "whisper-1")
TRANSCRIPTION_LANGUAGE = os.getenv("TRANSCRIPTION_LANGUAGE", "ru")
DEFAULT_VOCABULARY = ("Парацетамол", "ТайлолХот", "Тримол")
_MAX_PROMPT_NAMES = 30

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def build_vocabulary_prompt(names: Sequence[str] = DEFAULT_VOCABULARY) -> str:
    """Comma-separated hint of expected medicine names (the query format)."""
    unique = [name for name in dict.fromkeys(n.strip() for n in names) if name]
    return ", ".join(unique[:_MAX_PROMPT_NAMES])


class WhisperTranscriber:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = WHISPER_MODEL,
        language: str = TRANSCRIPTION_LANGUAGE,
        vocabulary: Sequence[str] = DEFAULT_VOCABULARY,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        self._model = model
        self._language = language
        self._prompt = build_vocabulary_prompt(vocabulary)

    async def transcribe(self, audio: bytes, filename: str = "voice.ogg") -> str:
        try:
            response = await self._client.audio.transcriptions.create(
                model=self._model,
                file=(filename, audio),
                prompt=self._prompt,
                language=self._language,
            )
        except _TRANSIENT_ERRORS as exc:
            logger.warning("Transcription error (transient): %s", exc)
            raise TranscriptionFailure(str(exc), transient=True) from exc
        except openai.OpenAIError as exc:
            logger.error("Transcription error: %s", exc)
            raise TranscriptionFailure(str(exc), transient=False) from exc
        return response.text


async def load_vocabulary(
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
    limit: int = _MAX_PROMPT_NAMES,
) -> tuple[str, ...]:
    """Canonical medicine names for the transcription prompt, oldest first."""

    async def _work(session: AsyncSession) -> list[str]:
        statement = select(Medicine.name).order_by(Medicine.created_at, Medicine.name).limit(limit)
        return list((await session.exec(statement)).all())

    names = await run_in_transaction(session_factory, _work, read_only=True)
    if not names:
        logger.warning("Medicine catalog is empty; using the default vocabulary")
        return DEFAULT_VOCABULARY
    return tuple(names)
