"""
Secuenciador de numeración fiscal.

``next_invoice_number`` es la autoridad de asignación: calcula la siguiente
secuencia a partir de una instantánea de los números existentes. Es una
función pura de esa instantánea, por lo que dos escritores concurrentes
pueden obtener el mismo número; el servicio de ciclo de vida serializa la
asignación con ``SequenceLockRegistry``.

La detección de huecos y duplicados es para auditoría, no para asignar.
"""
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple
import threading

from facturasimple.modules.invoices.numbering import (
    DEFAULT_PADDING, InvoiceNumber, build_invoice_number, parse_invoice_number
)

ScopeKey = Tuple[str, int]


@dataclass(frozen=True)
class AllocatedNumber:
    series: str
    fiscal_year: int
    sequence: int
    invoice_number: str


def next_invoice_number(
    existing_numbers: Iterable[str],
    series: str,
    fiscal_year: int,
    padding: int = DEFAULT_PADDING,
) -> AllocatedNumber:
    max_sequence = 0
    for raw in existing_numbers:
        parsed = parse_invoice_number(raw, series)
        if parsed is None or parsed.scope != (series, fiscal_year):
            continue
        max_sequence = max(max_sequence, parsed.sequence)

    sequence = max_sequence + 1
    return AllocatedNumber(
        series=series,
        fiscal_year=fiscal_year,
        sequence=sequence,
        invoice_number=build_invoice_number(series, fiscal_year, sequence, padding),
    )


def find_sequence_gaps(sequences: Iterable[int]) -> List[int]:
    """Enteros que faltan entre la menor y la mayor secuencia del grupo."""
    ordered = sorted(set(sequences))
    missing: List[int] = []
    for current, following in zip(ordered, ordered[1:]):
        missing.extend(range(current + 1, following))
    return missing


def find_duplicate_sequences(sequences: Iterable[int]) -> List[int]:
    """
    Una entrada por cada repetición más allá de la primera,
    ej. [1, 1, 1, 2] -> [1, 1].
    """
    duplicates: List[int] = []
    for sequence, count in sorted(Counter(sequences).items()):
        duplicates.extend([sequence] * (count - 1))
    return duplicates


def group_sequences(numbers: Iterable[InvoiceNumber]) -> Dict[ScopeKey, List[int]]:
    groups: Dict[ScopeKey, List[int]] = defaultdict(list)
    for number in numbers:
        groups[number.scope].append(number.sequence)
    return dict(groups)


@dataclass
class NumberingAudit:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duplicates: Dict[str, List[int]] = field(default_factory=dict)
    gaps: Dict[str, List[int]] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def scope_label(scope: ScopeKey) -> str:
    return f"{scope[0]}-{scope[1]}"


def audit_sequences(numbers: Iterable[InvoiceNumber]) -> NumberingAudit:
    """Duplicados como errores y huecos como avisos, por (serie, año)."""
    audit = NumberingAudit()
    for scope, sequences in sorted(group_sequences(numbers).items()):
        label = scope_label(scope)
        duplicates = find_duplicate_sequences(sequences)
        if duplicates:
            audit.duplicates[label] = duplicates
            for sequence in duplicates:
                audit.errors.append(f"Secuencia duplicada en {label}: {sequence}")
        missing = find_sequence_gaps(sequences)
        if missing:
            audit.gaps[label] = missing
            audit.warnings.append(
                f"Secuencias ausentes en {label}: {', '.join(str(s) for s in missing)}"
            )
    return audit


class SequenceLockRegistry:
    """
    Un ``threading.Lock`` por (tenant, serie, año fiscal).

    Protege la secuencia leer-calcular-escribir de la asignación dentro de
    un proceso. Con varios procesos hace falta además un punto de
    serialización en la base de datos.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str, int], threading.Lock] = {}

    def lock_for(self, tenant_id: str, series: str, fiscal_year: int) -> threading.Lock:
        key = (tenant_id, series, fiscal_year)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)
