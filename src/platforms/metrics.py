"""Расчёт метрик поста: ER и приведение сырых чисел провайдеров."""
from typing import Any


def calculate_engagement_rate(views: int, likes: int, comments: int, shares: int = 0) -> float:
    """
    ER = (likes + comments + shares) / views * 100, округлено до 2 знаков.
    Без просмотров ER не определён → 0.
    """
    if views <= 0:
        return 0.0
    return round((likes + comments + shares) / views * 100, 2)


def to_int(value: Any) -> int:
    """Привести число провайдера к int: '1,234' → 1234, None/мусор → 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return max(int(value), 0)
    if isinstance(value, str):
        cleaned = value.replace(",", "").replace(" ", "").strip()
        try:
            return max(int(float(cleaned)), 0)
        except ValueError:
            return 0
    return 0


def first_present(data: dict[str, Any], *keys: str) -> Any:
    """Первое непустое значение по списку ключей (провайдеры называют поля по-разному)."""
    for key in keys:
        value = data.get(key)
        if value not in (None, "", 0):
            return value
    return None
