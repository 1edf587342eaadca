"""Loguru sink для записи WARNING+ логов в Supabase."""
from typing import Any

from supabase import Client

from src.database import sanitize_error

LOG_TABLE = "scrape_logs"


def _log_row(record: dict[str, Any]) -> dict[str, Any]:
    """Строка scrape_logs из loguru record (креденшалы в тексте маскируются)."""
    row = {
        "level": record["level"].name,
        "module": record["name"],
        "message": sanitize_error(str(record["message"])),
    }
    exception = record.get("exception")
    if exception is not None and exception.value is not None:
        row["error_type"] = type(exception.value).__name__
    return row


def create_supabase_sink(db: Client):
    """Фабрика: вернуть sink-функцию, привязанную к db-клиенту."""

    def sink(message) -> None:
        try:
            db.table(LOG_TABLE).insert(_log_row(message.record)).execute()
        except Exception:
            pass  # Ошибка логирования не должна ронять приложение

    return sink
