"""Telegram webhook: the bot's entry point.

Telegram POSTs every update here.  The request is acknowledged at once and
the update is handled in a background task, so a slow transcription or a
paced multi-message answer never makes Telegram retry the delivery.

  voice         download → transcribe (catalog vocabulary) → search → replies
  web_app_data  pharmacy registration form → pharmacy + owner → confirmation
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Optional
from uuid import UUID

import aiohttp
from fastapi import APIRouter, BackgroundTasks, Header, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.db import AsyncSessionLocal
from app.core.errors import DeliveryFailure, PersistenceFailure, ValidationFailure
from app.services.dispatch import PacedDispatcher
from app.services.messages import TEXT_GENERIC_FAILURE, TEXT_PHARMACY_CREATED
from app.services.messaging import TelegramSender
from app.services.registration import parse_pharmacy_payload, register_pharmacy
from app.services.search import SearchOutcome
from app.services.transcription import DEFAULT_VOCABULARY, WhisperTranscriber, load_vocabulary
from app.services.voice_query import MAX_VOICE_DURATION_SECONDS, VoicePayload, handle_voice_query

logger = logging.getLogger(__name__)

TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")

router = APIRouter()


# ---------------------------------------------------------------------------
# Update payload (only the fields the bot reads)
# ---------------------------------------------------------------------------

class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class TelegramVoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file_id: str
    duration: int
    mime_type: Optional[str] = None


class TelegramWebAppData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: str


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_id: int
    chat: TelegramChat
    voice: Optional[TelegramVoice] = None
    web_app_data: Optional[TelegramWebAppData] = None


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: Optional[TelegramMessage] = None


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def answer_voice(
    chat_id: int,
    voice: TelegramVoice,
    sender: TelegramSender,
    dispatcher: PacedDispatcher,
    *,
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
) -> Optional[SearchOutcome]:
    """
    Download the voice note and answer it with pharmacy availability.

    Over-long notes are not downloaded; ``handle_voice_query`` rejects them
    on duration alone.
    """
    audio = b""
    vocabulary = DEFAULT_VOCABULARY
    if voice.duration <= MAX_VOICE_DURATION_SECONDS:
        try:
            audio = await sender.download_file(voice.file_id)
            vocabulary = await load_vocabulary(session_factory)
        except (DeliveryFailure, PersistenceFailure) as exc:
            logger.error("[ChatId=%d] Voice note not prepared: %s", chat_id, exc)
            await dispatcher.deliver(chat_id, [TEXT_GENERIC_FAILURE])
            return None

    payload = VoicePayload(chat_id=chat_id, duration=voice.duration, audio=audio, filename="voice.ogg")
    transcriber = WhisperTranscriber(vocabulary=vocabulary)
    return await handle_voice_query(payload, transcriber, dispatcher, session_factory=session_factory)


async def answer_registration(
    chat_id: int,
    data: str,
    dispatcher: PacedDispatcher,
    *,
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
) -> Optional[UUID]:
    """Register the pharmacy submitted through the web-app form."""
    try:
        payload = parse_pharmacy_payload(data)
        pharmacy_id = await register_pharmacy(payload, chat_id, session_factory=session_factory)
    except (ValidationFailure, PersistenceFailure) as exc:
        logger.warning("[ChatId=%d] Registration failed: %s", chat_id, type(exc).__name__)
        await dispatcher.deliver(chat_id, [TEXT_GENERIC_FAILURE])
        return None
    await dispatcher.deliver(chat_id, [TEXT_PHARMACY_CREATED])
    return pharmacy_id


async def process_update(update: TelegramUpdate) -> None:
    message = update.message
    if message is None or (message.voice is None and message.web_app_data is None):
        logger.debug("Update %d ignored", update.update_id)
        return

    async with aiohttp.ClientSession() as http:
        sender = TelegramSender(http)
        dispatcher = PacedDispatcher(sender)
        if message.voice is not None:
            await answer_voice(message.chat.id, message.voice, sender, dispatcher)
        else:
            await answer_registration(message.chat.id, message.web_app_data.data, dispatcher)


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------

@router.post("/telegram/webhook")
async def telegram_webhook(
    update: TelegramUpdate,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
) -> dict[str, bool]:
    if TELEGRAM_WEBHOOK_SECRET and x_telegram_bot_api_secret_token != TELEGRAM_WEBHOOK_SECRET:
        raise HTTPException(status_code=403, detail="Invalid webhook secret")
    background_tasks.add_task(process_update, update)
    return {"ok": True}
