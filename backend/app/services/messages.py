"""Plain display strings handed to the messaging collaborator."""
from __future__ import annotations

from app.services.availability import AvailabilityGroup
from app.services.search import SearchOutcome, SearchStatus

TEXT_TOO_LONG_VOICE = "Голосовое сообщение слишком длинное, уложитесь в 20 секунд"
TEXT_TOO_LONG_QUERY = "Слишком длинный запрос, перечислите не больше 10 лекарств"
TEXT_GENERIC_FAILURE = "Что-то пошло не так - попробуйте еще раз"
TEXT_PHARMACY_CREATED = "Аптека успешно создана ✅"
TEXT_NOT_RECOGNIZED = "Не удалось распознать лекарства: {query}"
TEXT_NOT_IN_STOCK = "Не нашел данные лекарства ни в одной из аптек: {query}"


def format_group(group: AvailabilityGroup) -> str:
    pharmacy = group.pharmacy
    base_info = f"Аптека: {pharmacy.name}\nАдрес: {pharmacy.address}\nPhone: {pharmacy.phone}"
    presence_info = f"В наличии: {', '.join(group.medicine_names)}"
    return base_info + "\n\n" + presence_info


def outcome_messages(outcome: SearchOutcome) -> list[str]:
    """One message per pharmacy group, or a single not-found message."""
    if outcome.status is SearchStatus.FOUND:
        return [format_group(group) for group in outcome.groups]
    if outcome.status is SearchStatus.NO_RESOLVED_MEDICINES:
        return [TEXT_NOT_RECOGNIZED.format(query=outcome.query_text)]
    return [TEXT_NOT_IN_STOCK.format(query=outcome.query_text)]
