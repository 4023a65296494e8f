from typing import Iterable

URGENT_KEYWORDS = ("urgent", "emergency")


def mentions_urgency(text: str, keywords: Iterable[str] = URGENT_KEYWORDS) -> bool:
    """
    Проверяет, содержит ли текст признаки срочности

    Args:
        text: Текст сообщения
        keywords: Ключевые слова (сравнение без учета регистра)

    Returns:
        bool: True если найдено хотя бы одно ключевое слово
    """
    if not text:
        return False
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def truncate_text(text: str, max_length: int = 100) -> str:
    """
    Обрезает текст до указанной длины, добавляя многоточие

    Args:
        text: Исходный текст
        max_length: Максимальная длина результата

    Returns:
        str: Обрезанный текст
    """
    if len(text) <= max_length:
        return text

    return text[:max_length-3] + "..."
