"""
Códec de números de factura.

Formato canónico ``SERIE-AAAA-NNNN`` (serie alfanumérica, año de 4 dígitos,
secuencia con al menos 3 dígitos). También se acepta el formato antiguo sin
serie ``AAAA-NNN``, al que se asigna la serie por defecto.
"""
from dataclasses import dataclass
from typing import Optional
import re

DEFAULT_PADDING = 4

CANONICAL_PATTERN = re.compile(r'^(?P<series>[A-Za-z0-9]+)-(?P<year>\d{4})-(?P<sequence>\d{3,})$')
LEGACY_PATTERN = re.compile(r'^(?P<year>\d{4})-(?P<sequence>\d{3,})$')


@dataclass(frozen=True)
class InvoiceNumber:
    series: str
    fiscal_year: int
    sequence: int

    @property
    def scope(self):
        """Ámbito de numeración: (serie, año fiscal)."""
        return (self.series, self.fiscal_year)

    def build(self, padding: int = DEFAULT_PADDING) -> str:
        return build_invoice_number(self.series, self.fiscal_year, self.sequence, padding)


def build_invoice_number(series: str, fiscal_year: int, sequence: int, padding: int = DEFAULT_PADDING) -> str:
    return f"{series}-{fiscal_year}-{sequence:0{padding}d}"


def parse_invoice_number(raw: Optional[str], fallback_series: str) -> Optional[InvoiceNumber]:
    """
    Interpreta un número de factura.

    Retorna ``None`` si el texto no es un número reconocible; nunca lanza.
    """
    if not isinstance(raw, str):
        return None
    value = raw.strip()

    match = CANONICAL_PATTERN.match(value)
    if match:
        series = match.group("series")
    else:
        match = LEGACY_PATTERN.match(value)
        if not match:
            return None
        series = fallback_series

    return InvoiceNumber(
        series=series,
        fiscal_year=int(match.group("year")),
        sequence=int(match.group("sequence")),
    )


def is_canonical(raw: str) -> bool:
    return CANONICAL_PATTERN.match(raw or "") is not None
