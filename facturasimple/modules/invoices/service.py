"""
Servicio de ciclo de vida de facturas

Única pieza autorizada a mutar el libro de facturas. Orquesta:
- Cálculo de totales (TaxCalculator)
- Validación fiscal (FiscalValidator)
- Asignación de número sin duplicados (next_invoice_number), serializada
  por (tenant, serie, año fiscal) con SequenceLockRegistry
- Máquina de estados y bloqueo de edición fuera de DRAFT
- Sellos de tiempo de creación, modificación y cambio de estado

Estados:
    DRAFT    -> PENDING, PAID, CANCELLED
    PENDING  -> PAID, OVERDUE, CANCELLED
    OVERDUE  -> PENDING, PAID, CANCELLED
    PAID     -> CANCELLED (anotación; nunca se borra)
    CANCELLED: terminal

El número, la serie, el año y la secuencia se asignan al crear y quedan
congelados cuando la factura sale de DRAFT. Solo los borradores se pueden
editar o borrar.
"""

from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Sequence
import logging

from facturasimple.common.audit import AuditTrail, SYSTEM_USER
from facturasimple.common.exceptions import (
    DuplicateInvoiceNumberError, ImmutableInvoiceError, InvalidStatusTransitionError,
    InvoiceValidationError, NotFoundError, ValidationIssue
)
from facturasimple.core.clock import Clock, MS_PER_DAY, fiscal_year_of
from facturasimple.core.config import InvoicingConfig
from facturasimple.modules.invoices.numbering import InvoiceNumber, parse_invoice_number
from facturasimple.modules.invoices.repository import InvoiceRepository
from facturasimple.modules.invoices.schemas import (
    Invoice, InvoiceCreate, InvoiceFilters, InvoiceItem, InvoiceSave, InvoiceStatus, new_id
)
from facturasimple.modules.invoices.sequencer import (
    AllocatedNumber, SequenceLockRegistry, next_invoice_number
)
from facturasimple.modules.invoices.validator import FiscalValidator
from facturasimple.modules.taxes.calculator import TaxCalculator, to_decimal
from facturasimple.modules.taxes.schemas import TaxTotals

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.PENDING, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PENDING, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.CANCELLED}),
    InvoiceStatus.CANCELLED: frozenset(),
}


def can_transition(current: InvoiceStatus, requested: InvoiceStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


class InvoiceLifecycleService:
    def __init__(
        self,
        repo: InvoiceRepository,
        config: InvoicingConfig,
        clock: Clock,
        locks: Optional[SequenceLockRegistry] = None,
        client_repo=None,
        audit: Optional[AuditTrail] = None,
    ):
        self.repo = repo
        self.config = config
        self.clock = clock
        self.locks = locks if locks is not None else SequenceLockRegistry()
        self.client_repo = client_repo
        self.audit = audit
        self.calculator = TaxCalculator()
        self.validator = FiscalValidator(config, clock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _tenant(self, tenant_id: Optional[str]) -> str:
        return tenant_id or self.config.default_tenant

    def _tenant_invoices(self, tenant_id: str) -> List[Invoice]:
        return [invoice for invoice in self.repo.list() if invoice.tenant_id == tenant_id]

    def _load(self, invoice_id: str, tenant_id: str) -> Optional[Invoice]:
        invoice = self.repo.get_by_id(invoice_id)
        if invoice is None or invoice.tenant_id != tenant_id:
            return None
        return invoice

    def _rates(self, candidate: InvoiceCreate):
        vat_rate = candidate.vat_rate if candidate.vat_rate is not None else to_decimal(self.config.default_vat_rate)
        irpf_rate = candidate.irpf_rate if candidate.irpf_rate is not None else to_decimal(self.config.default_irpf_rate)
        return vat_rate, irpf_rate

    def _due_date(self, candidate: InvoiceCreate) -> int:
        if candidate.due_date is not None:
            return candidate.due_date
        return candidate.issue_date + self.config.default_due_days * MS_PER_DAY

    def _client_name(self, client_id: str, tenant_id: str, fallback: Optional[str]) -> Optional[str]:
        if self.client_repo is None:
            return fallback
        client = self.client_repo.get_by_id(client_id)
        if client is None or client.tenant_id != tenant_id:
            return fallback
        return client.name

    def _record(self, action: str, invoice: Invoice, user_id: str, details: Optional[dict] = None) -> None:
        if self.audit is not None:
            details = {"invoice_number": invoice.invoice_number, **(details or {})}
            self.audit.record(action, "invoice", invoice.id, invoice.tenant_id, user_id, details)

    def _compute(self, candidate: InvoiceCreate):
        vat_rate, irpf_rate = self._rates(candidate)
        totals = self.calculator.compute_totals(
            candidate.items, vat_rate, irpf_rate, candidate.taxes_included
        )
        return vat_rate, irpf_rate, totals

    @staticmethod
    def _raise_if_issues(issues: Sequence[ValidationIssue], invoice_id: Optional[str] = None) -> None:
        if issues:
            logger.warning(f"Invoice {invoice_id or '<new>'} rejected: {[i.field for i in issues]}")
            raise InvoiceValidationError(list(issues))

    def _assemble(
        self,
        invoice_id: str,
        tenant_id: str,
        candidate: InvoiceCreate,
        number: InvoiceNumber,
        vat_rate: Decimal,
        irpf_rate: Decimal,
        totals: TaxTotals,
        due_date: int,
        created_at: int,
        updated_at: int,
        status_changed_at: Optional[int],
    ) -> Invoice:
        items = [
            InvoiceItem(
                id=item.id,
                description=item.description,
                quantity=item.quantity,
                price_unit=item.price_unit,
                subtotal=subtotal,
            )
            for item, subtotal in zip(candidate.items, totals.item_subtotals)
        ]
        return Invoice(
            id=invoice_id,
            tenant_id=tenant_id,
            invoice_number=number.build(self.config.sequence_padding),
            series=number.series,
            fiscal_year=number.fiscal_year,
            sequence=number.sequence,
            client_id=candidate.client_id,
            client_name=self._client_name(candidate.client_id, tenant_id, candidate.client_name),
            issue_date=candidate.issue_date,
            due_date=due_date,
            status=candidate.status,
            items=items,
            taxes_included=candidate.taxes_included,
            base_total=totals.base_total,
            vat_rate=vat_rate,
            vat_amount=totals.vat_amount,
            irpf_rate=irpf_rate,
            irpf_amount=totals.irpf_amount,
            total_amount=totals.total_amount,
            created_at=created_at,
            updated_at=updated_at,
            status_changed_at=status_changed_at,
        )

    def _insert(
        self,
        candidate: InvoiceCreate,
        tenant_id: str,
        user_id: str,
        invoice_id: str,
        reassign: bool,
    ) -> Invoice:
        """
        Alta de una factura nueva.

        Con ``reassign`` un número ausente, de otro ámbito o ya usado se
        sustituye por el siguiente de la secuencia. Sin ``reassign`` un
        número explícito debe ser válido y libre.
        """
        now = self.clock.now()
        if candidate.status != InvoiceStatus.DRAFT and not can_transition(InvoiceStatus.DRAFT, candidate.status):
            raise InvalidStatusTransitionError(invoice_id, InvoiceStatus.DRAFT, candidate.status)

        # Falla antes de escribir ningún número si el desglose es imposible
        vat_rate, irpf_rate, totals = self._compute(candidate)
        due_date = self._due_date(candidate)
        fiscal_year = fiscal_year_of(candidate.issue_date, self.config.timezone)

        parsed = None
        if candidate.invoice_number is not None:
            parsed = parse_invoice_number(candidate.invoice_number, candidate.series or self.config.default_series)
        series = candidate.series or (parsed.series if parsed else None) or self.config.default_series

        explicit_number = None if reassign else candidate.invoice_number
        issues = self.validator.validate(
            issue_date=candidate.issue_date,
            due_date=due_date,
            invoice_number=explicit_number,
            items=candidate.items,
            now=now,
        )
        if explicit_number is not None and parsed is not None and parsed.series != series:
            issues.append(ValidationIssue(
                "invoice_number", f"La serie del número ({parsed.series}) no coincide con la serie {series}"
            ))
        self._raise_if_issues(issues, invoice_id)

        # El candado solo serializa este proceso; entre procesos decide la
        # restricción única del almacén, y con reassign se reintenta una vez
        with self.locks.lock_for(tenant_id, series, fiscal_year):
            for attempt in range(2):
                ledger = self._tenant_invoices(tenant_id)
                taken = {invoice.number for invoice in ledger}

                keep = parsed is not None and parsed.scope == (series, fiscal_year) and parsed not in taken
                if keep:
                    number = parsed
                else:
                    if explicit_number is not None:
                        self._raise_if_issues(
                            [ValidationIssue("invoice_number", f"El número {explicit_number} ya existe")],
                            invoice_id,
                        )
                    allocated = next_invoice_number(
                        [invoice.invoice_number for invoice in ledger],
                        series, fiscal_year, self.config.sequence_padding,
                    )
                    number = InvoiceNumber(allocated.series, allocated.fiscal_year, allocated.sequence)
                    if candidate.invoice_number is not None:
                        logger.info(
                            f"Invoice number {candidate.invoice_number} not usable for {series}-{fiscal_year}; "
                            f"assigned {allocated.invoice_number}"
                        )

                invoice = self._assemble(
                    invoice_id, tenant_id, candidate, number, vat_rate, irpf_rate, totals, due_date,
                    created_at=now,
                    updated_at=now,
                    status_changed_at=now if candidate.status != InvoiceStatus.DRAFT else None,
                )
                try:
                    self.repo.save(invoice)
                    break
                except DuplicateInvoiceNumberError:
                    if explicit_number is not None or attempt:
                        raise
                    logger.warning(
                        f"Invoice number {invoice.invoice_number} taken by another writer; allocating again"
                    )

        logger.info(f"Invoice {invoice.invoice_number} created ({invoice.status.value}) for tenant {tenant_id}")
        self._record("create", invoice, user_id)
        return invoice

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(
        self,
        candidate: InvoiceCreate,
        tenant_id: Optional[str] = None,
        user_id: str = SYSTEM_USER,
        reassign: bool = True,
    ) -> Invoice:
        """
        Crear una factura y asignarle número.

        Con ``reassign=False`` un número explícito se conserva tal cual; si
        ya está ocupado se rechaza en vez de renumerar.

        Raises:
            InvoiceValidationError: fechas o plazo inválidos, número ocupado sin reassign
            DuplicateInvoiceNumberError: el almacén rechazó el número en otro proceso
            TaxConfigurationError: desglose con impuestos incluidos imposible
            InvalidStatusTransitionError: estado inicial no alcanzable desde DRAFT
        """
        return self._insert(candidate, self._tenant(tenant_id), user_id, new_id(), reassign=reassign)

    def save(self, candidate: InvoiceSave, tenant_id: Optional[str] = None, user_id: str = SYSTEM_USER) -> Invoice:
        """
        Guardar una factura por la ruta de edición.

        Si existe y no es DRAFT se rechaza sin aplicar nada. Si es DRAFT se
        revalida conservando su número. Si no existe se da de alta con el id
        recibido.

        Raises:
            ImmutableInvoiceError: la factura ya salió de DRAFT
            InvoiceValidationError: reglas fiscales incumplidas
            InvalidStatusTransitionError: estado no alcanzable desde DRAFT
        """
        tenant_id = self._tenant(tenant_id)
        existing = self.repo.get_by_id(candidate.id)
        if existing is not None and existing.tenant_id != tenant_id:
            raise NotFoundError("Factura", candidate.id)

        if existing is None:
            return self._insert(candidate, tenant_id, user_id, candidate.id, reassign=False)

        if existing.status != InvoiceStatus.DRAFT:
            logger.warning(f"Rejected edit of invoice {existing.invoice_number} in status {existing.status.value}")
            raise ImmutableInvoiceError(existing.id, existing.status)

        if candidate.status != existing.status and not can_transition(existing.status, candidate.status):
            raise InvalidStatusTransitionError(existing.id, existing.status, candidate.status)

        now = self.clock.now()
        vat_rate, irpf_rate, totals = self._compute(candidate)
        due_date = self._due_date(candidate)

        # El número ya asignado no se reasigna al editar
        issues = self.validator.validate(
            issue_date=candidate.issue_date,
            due_date=due_date,
            invoice_number=existing.invoice_number,
            fiscal_year=existing.fiscal_year,
            items=candidate.items,
            now=now,
        )
        self._raise_if_issues(issues, existing.id)

        status_changed_at = now if candidate.status != existing.status else existing.status_changed_at
        invoice = self._assemble(
            existing.id, tenant_id, candidate, existing.number, vat_rate, irpf_rate, totals, due_date,
            created_at=existing.created_at,
            updated_at=now,
            status_changed_at=status_changed_at,
        )
        self.repo.save(invoice)

        if candidate.status != existing.status:
            logger.info(f"Invoice {invoice.invoice_number} issued: {existing.status.value} -> {invoice.status.value}")
        self._record("update", invoice, user_id, {"status": invoice.status.value})
        return invoice

    def set_status(
        self,
        invoice_id: str,
        new_status: InvoiceStatus,
        tenant_id: Optional[str] = None,
        user_id: str = SYSTEM_USER,
    ) -> Optional[Invoice]:
        """
        Cambiar el estado de una factura.

        Retorna ``None`` si la factura no existe. Pedir el estado actual no
        cambia nada.

        Raises:
            InvalidStatusTransitionError: transición no permitida
        """
        invoice = self._load(invoice_id, self._tenant(tenant_id))
        if invoice is None:
            return None
        if invoice.status == new_status:
            return invoice
        if not can_transition(invoice.status, new_status):
            logger.warning(
                f"Rejected status change of invoice {invoice.invoice_number}: "
                f"{invoice.status.value} -> {new_status.value}"
            )
            raise InvalidStatusTransitionError(invoice.id, invoice.status, new_status)

        now = self.clock.now()
        previous = invoice.status
        updated = invoice.model_copy(update={
            "status": new_status,
            "updated_at": now,
            "status_changed_at": now,
        })
        self.repo.save(updated)

        logger.info(f"Invoice {updated.invoice_number} status changed from {previous.value} to {new_status.value}")
        self._record("status", updated, user_id, {"from": previous.value, "to": new_status.value})
        return updated

    def cancel(self, invoice_id: str, tenant_id: Optional[str] = None, user_id: str = SYSTEM_USER) -> Optional[Invoice]:
        """Anular una factura. Nunca la borra."""
        return self.set_status(invoice_id, InvoiceStatus.CANCELLED, tenant_id, user_id)

    def delete_draft(self, invoice_id: str, tenant_id: Optional[str] = None, user_id: str = SYSTEM_USER) -> bool:
        """Borrar un borrador. Retorna False si no existe o ya no es DRAFT."""
        invoice = self._load(invoice_id, self._tenant(tenant_id))
        if invoice is None:
            return False
        if invoice.status != InvoiceStatus.DRAFT:
            logger.warning(f"Refused to delete invoice {invoice.invoice_number} in status {invoice.status.value}")
            return False

        self.repo.delete(invoice_id)
        logger.info(f"Draft invoice {invoice.invoice_number} deleted")
        self._record("delete", invoice, user_id)
        return True

    def get(self, invoice_id: str, tenant_id: Optional[str] = None) -> Invoice:
        invoice = self._load(invoice_id, self._tenant(tenant_id))
        if invoice is None:
            raise NotFoundError("Factura", invoice_id)
        return invoice

    def list(self, tenant_id: Optional[str] = None, filters: Optional[InvoiceFilters] = None) -> List[Invoice]:
        invoices = self._tenant_invoices(self._tenant(tenant_id))
        if filters:
            if filters.status is not None:
                invoices = [i for i in invoices if i.status == filters.status]
            if filters.client_id:
                invoices = [i for i in invoices if i.client_id == filters.client_id]
            if filters.series:
                invoices = [i for i in invoices if i.series == filters.series]
            if filters.fiscal_year is not None:
                invoices = [i for i in invoices if i.fiscal_year == filters.fiscal_year]
            if filters.search:
                term = filters.search.strip().lower()
                invoices = [
                    i for i in invoices
                    if term in i.invoice_number.lower() or term in (i.client_name or "").lower()
                ]
        return sorted(invoices, key=lambda i: (i.issue_date, i.sequence), reverse=True)

    def preview_next_number(
        self,
        tenant_id: Optional[str] = None,
        series: Optional[str] = None,
        issue_date: Optional[int] = None,
    ) -> AllocatedNumber:
        """Número que recibiría la próxima factura; no reserva nada."""
        series = series or self.config.default_series
        fiscal_year = fiscal_year_of(issue_date if issue_date is not None else self.clock.now(), self.config.timezone)
        ledger = self._tenant_invoices(self._tenant(tenant_id))
        return next_invoice_number(
            [invoice.invoice_number for invoice in ledger],
            series, fiscal_year, self.config.sequence_padding,
        )

    def sweep_overdue(self, tenant_id: Optional[str] = None, user_id: str = SYSTEM_USER) -> List[Invoice]:
        """Pasa a OVERDUE las facturas PENDING con vencimiento pasado."""
        now = self.clock.now()
        updated = []
        for invoice in self._tenant_invoices(self._tenant(tenant_id)):
            if invoice.status == InvoiceStatus.PENDING and invoice.due_date < now:
                result = self.set_status(invoice.id, InvoiceStatus.OVERDUE, invoice.tenant_id, user_id)
                if result is not None:
                    updated.append(result)
        if updated:
            logger.info(f"Overdue sweep marked {len(updated)} invoice(s)")
        return updated
