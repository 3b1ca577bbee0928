"""
Validadores específicos para España
"""
import re

NIF_MIN_LENGTH = 5

_SERIES_PATTERN = re.compile(r'^[A-Za-z0-9]+$')


def clean_nif(nif: str) -> str:
    """
    Normaliza un NIF/CIF: mayúsculas, sin espacios ni puntos.
    Los guiones se conservan (ej. B-12345678).
    """
    return re.sub(r'[\.\s]', '', nif or '').upper()


def validate_nif(nif: str) -> bool:
    """
    Valida NIF/CIF español de forma laxa.
    - Al menos 5 caracteres una vez normalizado
    - Solo letras, números y guiones
    """
    cleaned = clean_nif(nif)
    if len(cleaned) < NIF_MIN_LENGTH:
        return False
    return re.fullmatch(r'[A-Z0-9\-]+', cleaned) is not None


def validate_series(series: str) -> bool:
    """Una serie de facturación es alfanumérica y no vacía."""
    return bool(series) and _SERIES_PATTERN.match(series) is not None
