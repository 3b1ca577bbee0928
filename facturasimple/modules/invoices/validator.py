"""
Validador fiscal.

Comprueba de forma independiente cada regla y acumula todos los problemas,
para que el llamante pueda mostrarlos de una vez:

- la fecha de emisión no puede ser futura
- el vencimiento no puede ser anterior a la emisión ni superar el plazo
  máximo de pago
- el año del número de factura debe coincidir con el año de emisión
"""
from typing import List, Optional, Sequence
import logging

from facturasimple.common.exceptions import ValidationIssue
from facturasimple.core.clock import Clock, MS_PER_DAY, fiscal_year_of
from facturasimple.core.config import InvoicingConfig
from facturasimple.modules.invoices.numbering import parse_invoice_number

logger = logging.getLogger(__name__)


class FiscalValidator:
    def __init__(self, config: InvoicingConfig, clock: Clock):
        self.config = config
        self.clock = clock

    @property
    def max_term_ms(self) -> int:
        return self.config.max_payment_term_days * MS_PER_DAY

    def validate(
        self,
        issue_date: int,
        due_date: int,
        invoice_number: Optional[str] = None,
        fiscal_year: Optional[int] = None,
        items: Optional[Sequence] = None,
        now: Optional[int] = None,
    ) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        current = self.clock.now() if now is None else now

        if issue_date > current:
            issues.append(ValidationIssue("issue_date", "La fecha de emisión no puede ser futura"))

        if due_date < issue_date:
            issues.append(ValidationIssue(
                "due_date", "La fecha de vencimiento no puede ser anterior a la fecha de emisión"
            ))
        elif due_date - issue_date > self.max_term_ms:
            term_days = (due_date - issue_date) // MS_PER_DAY
            issues.append(ValidationIssue(
                "due_date",
                f"El plazo de pago supera los {self.config.max_payment_term_days} días ({term_days})"
            ))

        issue_year = fiscal_year_of(issue_date, self.config.timezone)
        years = []
        if invoice_number is not None:
            parsed = parse_invoice_number(invoice_number, self.config.default_series)
            if parsed is None:
                issues.append(ValidationIssue(
                    "invoice_number", f"Número de factura no reconocido: {invoice_number}"
                ))
            else:
                years.append(parsed.fiscal_year)
        if fiscal_year is not None:
            years.append(fiscal_year)
        if any(year != issue_year for year in years):
            issues.append(ValidationIssue(
                "invoice_number",
                f"El año fiscal del número ({', '.join(str(y) for y in sorted(set(years)))}) "
                f"no coincide con el año de emisión ({issue_year})"
            ))

        if items is not None and len(items) == 0:
            issues.append(ValidationIssue("items", "Añade al menos un concepto"))

        if issues:
            logger.debug(f"Fiscal validation found {len(issues)} issue(s): {issues}")
        return issues
