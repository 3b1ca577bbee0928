"""
Reloj inyectable del sistema.

Todas las marcas de tiempo del dominio son enteros en milisegundos desde
epoch (UTC). El año fiscal y las fechas locales se derivan usando la zona
horaria fiscal configurada.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo
import time

MS_PER_DAY = 24 * 60 * 60 * 1000


class Clock(ABC):
    """Puerto para obtener la hora actual."""

    @abstractmethod
    def now(self) -> int:
        """Retorna la hora actual en milisegundos desde epoch."""
        pass


class SystemClock(Clock):
    def now(self) -> int:
        return time.time_ns() // 1_000_000


class FixedClock(Clock):
    """Reloj controlable para pruebas y reprocesos deterministas."""

    def __init__(self, now_ms: int):
        self._now = now_ms

    def now(self) -> int:
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = now_ms

    def advance(self, days: int = 0, ms: int = 0) -> int:
        self._now += days * MS_PER_DAY + ms
        return self._now


def _zone(tz: Optional[str]):
    return ZoneInfo(tz) if tz else timezone.utc


def from_epoch_ms(value: int, tz: Optional[str] = None) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=_zone(tz))


def to_epoch_ms(value, tz: Optional[str] = None) -> int:
    """Convierte un ``date`` (medianoche local) o ``datetime`` a milisegundos."""
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=_zone(tz))
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day, tzinfo=_zone(tz))
    else:
        raise TypeError(f"Tipo de fecha no soportado: {type(value).__name__}")
    return int(dt.timestamp() * 1000)


def fiscal_year_of(value: int, tz: Optional[str] = None) -> int:
    """Año natural (fiscal) de una marca de tiempo en la zona indicada."""
    return from_epoch_ms(value, tz).year
