import unittest
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from app.core.errors import InputTooLarge, PersistenceFailure, TranscriptionFailure
from app.services.availability import AvailabilityGroup, PharmacyInfo
from app.services.dispatch import PacedDispatcher
from app.services.messages import TEXT_GENERIC_FAILURE, TEXT_TOO_LONG_QUERY, TEXT_TOO_LONG_VOICE
from app.services.search import SearchOutcome, SearchStatus
from app.services.voice_query import VoicePayload, check_voice_duration, handle_voice_query

CHAT_ID = 7


def _transcriber(text="Парацетомол, ТайлолХот", error=None):
    transcriber = MagicMock()
    transcriber.transcribe = AsyncMock(return_value=text, side_effect=error)
    return transcriber


class VoiceQueryTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.sender = MagicMock()
        self.sender.send_text = AsyncMock()
        self.dispatcher = PacedDispatcher(self.sender, interval=0, timeout=None)

    def _sent(self):
        return [c.args[1] for c in self.sender.send_text.await_args_list]

    def test_duration_limit(self):
        check_voice_duration(20)
        with self.assertRaises(InputTooLarge):
            check_voice_duration(21)

    async def test_long_voice_rejected_before_transcription(self):
        transcriber = _transcriber()
        voice = VoicePayload(chat_id=CHAT_ID, duration=25, audio=b"ogg")

        result = await handle_voice_query(voice, transcriber, self.dispatcher)

        self.assertIsNone(result)
        transcriber.transcribe.assert_not_awaited()
        self.assertEqual(self._sent(), [TEXT_TOO_LONG_VOICE])

    async def test_transcription_failure_sends_generic_error(self):
        transcriber = _transcriber(error=TranscriptionFailure("timeout", transient=True))
        voice = VoicePayload(chat_id=CHAT_ID, duration=5, audio=b"ogg")

        result = await handle_voice_query(voice, transcriber, self.dispatcher)

        self.assertIsNone(result)
        self.assertEqual(self._sent(), [TEXT_GENERIC_FAILURE])

    @patch("app.services.voice_query.search_pharmacies", new_callable=AsyncMock)
    async def test_too_many_names_in_transcription(self, search):
        search.side_effect = InputTooLarge("too many", limit=10, actual=12)
        voice = VoicePayload(chat_id=CHAT_ID, duration=15, audio=b"ogg")

        result = await handle_voice_query(voice, _transcriber(), self.dispatcher)

        self.assertIsNone(result)
        self.assertEqual(self._sent(), [TEXT_TOO_LONG_QUERY])

    @patch("app.services.voice_query.search_pharmacies", new_callable=AsyncMock)
    async def test_storage_failure_sends_generic_error(self, search):
        search.side_effect = PersistenceFailure("OperationalError during transaction")
        voice = VoicePayload(chat_id=CHAT_ID, duration=5, audio=b"ogg")

        self.assertIsNone(await handle_voice_query(voice, _transcriber(), self.dispatcher))
        self.assertEqual(self._sent(), [TEXT_GENERIC_FAILURE])

    @patch("app.services.voice_query.search_pharmacies", new_callable=AsyncMock)
    async def test_found_results_sent_per_pharmacy(self, search):
        groups = [
            AvailabilityGroup(
                pharmacy=PharmacyInfo(id=uuid4(), name="Неман", address="ул. Киевская 95", phone="1"),
                medicine_names=("Парацетамол", "ТайлолХот"),
            ),
            AvailabilityGroup(
                pharmacy=PharmacyInfo(id=uuid4(), name="Бишкек Фарм", address="пр. Чуй 120", phone="2"),
                medicine_names=("Парацетамол",),
            ),
        ]
        outcome = SearchOutcome(status=SearchStatus.FOUND, query_text="Парацетомол, ТайлолХот", groups=groups)
        search.return_value = outcome
        voice = VoicePayload(chat_id=CHAT_ID, duration=5, audio=b"ogg")

        result = await handle_voice_query(voice, _transcriber(), self.dispatcher, threshold=0.8)

        self.assertIs(result, outcome)
        search.assert_awaited_once_with("Парацетомол, ТайлолХот", threshold=0.8)
        sent = self._sent()
        self.assertEqual(len(sent), 2)
        self.assertTrue(sent[0].startswith("Аптека: Неман"))


if __name__ == "__main__":
    unittest.main()
