"""Voice message → pharmacy availability replies.

Duration check, transcription, search and paced delivery, in that order.
The search transaction completes before the first reply is sent.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

from app.core.errors import InputTooLarge, PersistenceFailure, TranscriptionFailure
from app.services.dispatch import DispatchReport, PacedDispatcher, deliver_outcome
from app.services.messages import TEXT_GENERIC_FAILURE, TEXT_TOO_LONG_QUERY, TEXT_TOO_LONG_VOICE
from app.services.search import SearchOutcome, search_pharmacies

logger = logging.getLogger(__name__)

MAX_VOICE_DURATION_SECONDS = int(os.getenv("MAX_VOICE_DURATION_SECONDS", "20"))


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, filename: str = ...) -> str: ...


@dataclass(frozen=True)
class VoicePayload:
    chat_id: int
    duration: int
    audio: bytes
    filename: str = "voice.ogg"


def check_voice_duration(duration: int) -> None:
    if duration > MAX_VOICE_DURATION_SECONDS:
        raise InputTooLarge(
            f"Voice message is {duration}s long (max {MAX_VOICE_DURATION_SECONDS}s)",
            limit=MAX_VOICE_DURATION_SECONDS,
            actual=duration,
        )


async def handle_voice_query(
    voice: VoicePayload,
    transcriber: Transcriber,
    dispatcher: PacedDispatcher,
    **search_kwargs,
) -> Optional[SearchOutcome]:
    """
    Answer a voice query.  Returns the search outcome, or ``None`` when the
    query was rejected before searching (too long, not transcribed, storage
    failure); in those cases the user has been sent an explanatory message.
    """
    try:
        check_voice_duration(voice.duration)
        text = await transcriber.transcribe(voice.audio, voice.filename)
        logger.info("[ChatId=%d] Transcribed voice: %r", voice.chat_id, text)
        outcome = await search_pharmacies(text, **search_kwargs)
    except InputTooLarge as exc:
        logger.info("[ChatId=%d] Rejected query: %s", voice.chat_id, exc)
        message = TEXT_TOO_LONG_VOICE if voice.duration > MAX_VOICE_DURATION_SECONDS else TEXT_TOO_LONG_QUERY
        await dispatcher.deliver(voice.chat_id, [message])
        return None
    except (TranscriptionFailure, PersistenceFailure) as exc:
        logger.error("[ChatId=%d] Voice query failed: %s", voice.chat_id, type(exc).__name__)
        await dispatcher.deliver(voice.chat_id, [TEXT_GENERIC_FAILURE])
        return None

    report: DispatchReport = await deliver_outcome(dispatcher, voice.chat_id, outcome)
    logger.info(
        "[ChatId=%d] %s: %d messages sent, %d failed",
        voice.chat_id, outcome.status.value, report.sent, report.failed,
    )
    return outcome
