"""
Tests para el módulo de Facturas

Cubren:
- Códec de números (formato canónico y antiguo)
- Secuenciador: siguiente número, huecos, duplicados y bloqueo por ámbito
- Validador fiscal: fecha futura, plazo máximo de pago, año del número
- Ciclo de vida: alta, edición de borradores, estados, anulación y borrado
- Repositorio SQLAlchemy
- Conciliación y exportación CSV
- Endpoints /invoices
"""

import threading
from decimal import Decimal

import pytest

from facturasimple.common.audit import AuditTrail
from facturasimple.common.exceptions import (
    ConflictError, DuplicateInvoiceNumberError, ImmutableInvoiceError, InvalidStatusTransitionError,
    InvoiceValidationError, NotFoundError, TaxConfigurationError
)
from facturasimple.core.clock import MS_PER_DAY
from facturasimple.modules.invoices.csv_export import export_invoices_csv
from facturasimple.modules.invoices.csv_import import commit_import, reconcile_invoices_csv
from facturasimple.modules.invoices.numbering import (
    InvoiceNumber, build_invoice_number, is_canonical, parse_invoice_number
)
from facturasimple.modules.invoices.repository import SQLAlchemyInvoiceRepository
from facturasimple.modules.invoices.schemas import (
    InvoiceFilters, InvoiceItemCreate, InvoiceSave, InvoiceStatus
)
from facturasimple.modules.invoices.sequencer import (
    SequenceLockRegistry, audit_sequences, find_duplicate_sequences, find_sequence_gaps,
    next_invoice_number
)
from facturasimple.modules.invoices.service import InvoiceLifecycleService, can_transition
from facturasimple.modules.invoices.validator import FiscalValidator

CSV_HEADER = "Número,Fecha Emisión,Fecha Vencimiento,Cliente,Estado,Base Imponible,IVA,IRPF,Total"


def csv_text(*rows):
    return "\n".join((CSV_HEADER,) + rows) + "\n"


def as_save(invoice_id, candidate):
    return InvoiceSave(id=invoice_id, **candidate.model_dump())


class StaleLedgerRepository(SQLAlchemyInvoiceRepository):
    """La primera lectura no ve las altas de otro proceso."""

    def __init__(self, db, tenant_id=None):
        super().__init__(db, tenant_id)
        self.stale_reads = 1

    def list(self):
        if self.stale_reads:
            self.stale_reads -= 1
            return []
        return super().list()


# ===== CÓDEC =====

class TestInvoiceNumberCodec:
    @pytest.mark.parametrize("series,year,sequence", [
        ("FS", 2025, 1),
        ("R", 2000, 0),
        ("ABC123", 2031, 12345),
    ])
    def test_round_trip(self, series, year, sequence):
        raw = build_invoice_number(series, year, sequence)
        assert parse_invoice_number(raw, "FS") == InvoiceNumber(series, year, sequence)

    def test_padding(self):
        assert build_invoice_number("FS", 2025, 7) == "FS-2025-0007"
        assert build_invoice_number("FS", 2025, 7, padding=3) == "FS-2025-007"
        assert build_invoice_number("FS", 2025, 12345) == "FS-2025-12345"

    def test_legacy_format(self):
        assert parse_invoice_number("2025-007", "FS") == InvoiceNumber("FS", 2025, 7)
        assert parse_invoice_number(" 2025-007 ", "R") == InvoiceNumber("R", 2025, 7)

    @pytest.mark.parametrize("raw", ["", "FS-25-001", "FS-2025-01", "FS_2025_001", "F S-2025-001", None])
    def test_unrecognized_returns_none(self, raw):
        assert parse_invoice_number(raw, "FS") is None

    def test_is_canonical(self):
        assert is_canonical("FS-2025-001")
        assert not is_canonical("2025-001")


# ===== SECUENCIADOR =====

class TestSequencer:
    def test_first_number(self):
        allocated = next_invoice_number([], "FS", 2025)
        assert allocated.sequence == 1
        assert allocated.invoice_number == "FS-2025-0001"

    def test_max_plus_one_ignores_gaps(self):
        existing = ["FS-2025-0001", "FS-2025-0002", "FS-2025-0005"]
        assert next_invoice_number(existing, "FS", 2025).sequence == 6

    def test_scoped_by_series_and_year(self):
        existing = ["FS-2025-0009", "FS-2024-0050", "R-2025-0020", "basura"]
        assert next_invoice_number(existing, "FS", 2025).sequence == 10
        assert next_invoice_number(existing, "R", 2025).sequence == 21
        assert next_invoice_number(existing, "FS", 2026).sequence == 1

    def test_legacy_numbers_count(self):
        assert next_invoice_number(["2025-004"], "FS", 2025).sequence == 5

    def test_gaps_and_duplicates(self):
        assert find_sequence_gaps([5, 1, 2]) == [3, 4]
        assert find_sequence_gaps([]) == []
        assert find_duplicate_sequences([1, 1, 1, 2, 3, 3]) == [1, 1, 3]

    def test_audit(self):
        numbers = [InvoiceNumber("FS", 2025, s) for s in (1, 1, 4)] + [InvoiceNumber("R", 2025, 1)]
        audit = audit_sequences(numbers)
        assert audit.errors == ["Secuencia duplicada en FS-2025: 1"]
        assert audit.warnings == ["Secuencias ausentes en FS-2025: 2, 3"]
        assert not audit.is_valid

    def test_lock_registry(self):
        locks = SequenceLockRegistry()
        assert locks.lock_for("public", "FS", 2025) is locks.lock_for("public", "FS", 2025)
        assert locks.lock_for("public", "FS", 2025) is not locks.lock_for("otra", "FS", 2025)
        assert len(locks) == 2


# ===== VALIDADOR =====

class TestFiscalValidator:
    @pytest.fixture
    def validator(self, config, clock):
        return FiscalValidator(config, clock)

    def test_payment_term_boundary(self, validator, at):
        issue = at(2025, 6, 1)
        assert validator.validate(issue, issue + 60 * MS_PER_DAY) == []

        issues = validator.validate(issue, issue + 61 * MS_PER_DAY)
        assert [i.field for i in issues] == ["due_date"]

    def test_due_before_issue(self, validator, at):
        issues = validator.validate(at(2025, 6, 1), at(2025, 5, 31))
        assert [i.field for i in issues] == ["due_date"]

    def test_future_issue_date(self, validator, at):
        issues = validator.validate(at(2025, 6, 16), at(2025, 6, 20))
        assert [i.field for i in issues] == ["issue_date"]

    def test_number_year_mismatch(self, validator, at):
        issues = validator.validate(at(2025, 6, 1), at(2025, 6, 30), invoice_number="FS-2024-0001")
        assert [i.field for i in issues] == ["invoice_number"]

    def test_fiscal_year_uses_local_calendar(self, validator, at):
        # 00:30 del 1 de enero en Madrid todavía es 31 de diciembre en UTC
        issue = at(2025, 1, 1, 0, 30)
        assert validator.validate(issue, issue + MS_PER_DAY, invoice_number="FS-2025-0001") == []

    def test_issues_accumulate(self, validator, at):
        issues = validator.validate(
            at(2025, 7, 1), at(2025, 6, 1), invoice_number="XX", items=[]
        )
        assert [i.field for i in issues] == ["issue_date", "due_date", "invoice_number", "items"]


# ===== CICLO DE VIDA =====

class TestCreateInvoice:
    def test_assigns_first_number(self, service, make_candidate, clock):
        invoice = service.create(make_candidate())
        assert invoice.invoice_number == "FS-2025-0001"
        assert (invoice.series, invoice.fiscal_year, invoice.sequence) == ("FS", 2025, 1)
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.created_at == invoice.updated_at == clock.now()
        assert invoice.status_changed_at is None

    def test_totals_and_client_name(self, service, make_candidate):
        invoice = service.create(make_candidate())
        assert invoice.base_total == Decimal("200")
        assert invoice.vat_amount == Decimal("42")
        assert invoice.total_amount == Decimal("242")
        assert invoice.items[0].subtotal == Decimal("200")
        assert invoice.client_name == "Acme Consultores S.L."

    def test_consecutive_numbers(self, service, make_candidate):
        numbers = [service.create(make_candidate()).invoice_number for _ in range(3)]
        assert numbers == ["FS-2025-0001", "FS-2025-0002", "FS-2025-0003"]

    def test_explicit_number_kept(self, service, make_candidate):
        assert service.create(make_candidate(invoice_number="FS-2025-0007")).invoice_number == "FS-2025-0007"
        assert service.create(make_candidate()).invoice_number == "FS-2025-0008"

    def test_legacy_number_normalized(self, service, make_candidate):
        assert service.create(make_candidate(invoice_number="2025-003")).invoice_number == "FS-2025-0003"

    def test_colliding_number_reassigned(self, service, make_candidate):
        service.create(make_candidate(invoice_number="FS-2025-0001"))
        assert service.create(make_candidate(invoice_number="FS-2025-0001")).invoice_number == "FS-2025-0002"

    def test_number_from_other_year_reassigned(self, service, make_candidate):
        invoice = service.create(make_candidate(invoice_number="FS-2024-0005"))
        assert invoice.invoice_number == "FS-2025-0001"

    def test_series(self, service, make_candidate):
        service.create(make_candidate())
        assert service.create(make_candidate(series="R")).invoice_number == "R-2025-0001"

    def test_year_boundary(self, service, make_candidate, at):
        issue = at(2025, 1, 1, 0, 30)
        invoice = service.create(make_candidate(issue_date=issue, due_date=issue + 30 * MS_PER_DAY))
        assert invoice.fiscal_year == 2025

    def test_defaults(self, service, make_candidate, config):
        candidate = make_candidate(due_date=None, vat_rate=None, irpf_rate=None)
        invoice = service.create(candidate)
        assert invoice.due_date == candidate.issue_date + config.default_due_days * MS_PER_DAY
        assert invoice.vat_rate == Decimal("0.21")
        assert invoice.irpf_rate == Decimal("0")

    def test_created_outside_draft(self, service, make_candidate, clock):
        invoice = service.create(make_candidate(status=InvoiceStatus.PENDING))
        assert invoice.status_changed_at == clock.now()

    def test_unreachable_initial_status(self, service, make_candidate, invoice_repo):
        with pytest.raises(InvalidStatusTransitionError):
            service.create(make_candidate(status=InvoiceStatus.OVERDUE))
        assert invoice_repo.list() == []

    def test_future_issue_date(self, service, make_candidate, at, invoice_repo):
        with pytest.raises(InvoiceValidationError) as exc:
            service.create(make_candidate(issue_date=at(2025, 6, 20), due_date=at(2025, 7, 1)))
        assert exc.value.fields == ["issue_date"]
        assert invoice_repo.list() == []

    def test_payment_term_exceeded(self, service, make_candidate, at):
        issue = at(2025, 6, 1)
        with pytest.raises(InvoiceValidationError) as exc:
            service.create(make_candidate(issue_date=issue, due_date=issue + 61 * MS_PER_DAY))
        assert exc.value.fields == ["due_date"]

    def test_tax_configuration_rejected_before_numbering(self, service, make_candidate, invoice_repo):
        with pytest.raises(TaxConfigurationError):
            service.create(make_candidate(taxes_included=True, vat_rate=Decimal("0"), irpf_rate=Decimal("1")))
        assert invoice_repo.list() == []

    def test_taxes_included(self, service, make_candidate):
        items = [InvoiceItemCreate(description="Cuota", quantity=Decimal("1"), price_unit=Decimal("242"))]
        invoice = service.create(make_candidate(items=items, taxes_included=True))
        assert invoice.total_amount == Decimal("242")
        assert round(invoice.base_total, 2) == Decimal("200.00")

    def test_tenants_have_independent_sequences(self, service, make_candidate):
        assert service.create(make_candidate(), "empresa-a").invoice_number == "FS-2025-0001"
        assert service.create(make_candidate(), "empresa-b").invoice_number == "FS-2025-0001"
        assert service.list("empresa-a")[0].tenant_id == "empresa-a"

    def test_concurrent_creation_never_duplicates(self, service, make_candidate):
        candidates = [make_candidate() for _ in range(20)]
        threads = [threading.Thread(target=service.create, args=(c,)) for c in candidates]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        sequences = sorted(invoice.sequence for invoice in service.list())
        assert sequences == list(range(1, 21))

    def test_audit_event(self, service, make_candidate, audit):
        invoice = service.create(make_candidate(), user_id="ana")
        event = audit.list(user_id="ana")[0]
        assert (event.action, event.entity, event.entity_id) == ("create", "invoice", invoice.id)
        assert event.details["invoice_number"] == "FS-2025-0001"

    def test_empty_audit_trail_records_events(self, invoice_repo, config, clock, make_candidate):
        trail = AuditTrail(clock=clock)
        service = InvoiceLifecycleService(invoice_repo, config, clock, audit=trail)
        invoice = service.create(make_candidate())
        service.cancel(invoice.id)
        assert [event.action for event in trail.list()] == ["status", "create"]

    def test_empty_lock_registry_is_shared(self, invoice_repo, config, clock):
        registry = SequenceLockRegistry()
        first = InvoiceLifecycleService(invoice_repo, config, clock, locks=registry)
        second = InvoiceLifecycleService(invoice_repo, config, clock, locks=registry)
        assert first.locks is registry and second.locks is registry

    def test_without_reassign_taken_number_rejected(self, service, make_candidate, invoice_repo):
        service.create(make_candidate())
        with pytest.raises(InvoiceValidationError) as exc:
            service.create(make_candidate(invoice_number="FS-2025-0001"), reassign=False)
        assert exc.value.fields == ["invoice_number"]
        assert len(invoice_repo.list()) == 1

    def test_without_reassign_free_number_kept(self, service, make_candidate):
        invoice = service.create(make_candidate(invoice_number="FS-2025-0009"), reassign=False)
        assert invoice.invoice_number == "FS-2025-0009"


class TestSaveInvoice:
    def test_edit_draft_keeps_number(self, service, make_candidate, clock):
        draft = service.create(make_candidate())
        clock.advance(ms=1000)

        saved = service.save(as_save(draft.id, make_candidate(invoice_number="FS-2025-0099", vat_rate=Decimal("0.10"))))
        assert saved.invoice_number == draft.invoice_number
        assert saved.vat_amount == Decimal("20")
        assert saved.created_at == draft.created_at
        assert saved.updated_at == clock.now()
        assert saved.status_changed_at is None

    def test_issue_from_draft(self, service, make_candidate, clock):
        draft = service.create(make_candidate())
        clock.advance(days=1)
        saved = service.save(as_save(draft.id, make_candidate(status=InvoiceStatus.PENDING)))
        assert saved.status == InvoiceStatus.PENDING
        assert saved.status_changed_at == clock.now()

    def test_pending_is_immutable(self, service, make_candidate, invoice_repo):
        invoice = service.create(make_candidate(status=InvoiceStatus.PENDING))
        with pytest.raises(ImmutableInvoiceError):
            service.save(as_save(invoice.id, make_candidate(status=InvoiceStatus.PENDING, vat_rate=Decimal("0.04"))))
        assert invoice_repo.get_by_id(invoice.id) == invoice

    def test_year_change_rejected(self, service, make_candidate, at):
        draft = service.create(make_candidate())
        with pytest.raises(InvoiceValidationError) as exc:
            service.save(as_save(draft.id, make_candidate(issue_date=at(2024, 12, 20), due_date=at(2025, 1, 10))))
        assert exc.value.fields == ["invoice_number"]

    def test_new_invoice_with_explicit_number(self, service, make_candidate):
        saved = service.save(as_save("factura-1", make_candidate(invoice_number="FS-2025-0010")))
        assert saved.id == "factura-1"
        assert saved.invoice_number == "FS-2025-0010"

    def test_new_invoice_without_number(self, service, make_candidate):
        saved = service.save(as_save("factura-1", make_candidate()))
        assert saved.invoice_number == "FS-2025-0001"

    def test_new_invoice_duplicate_number(self, service, make_candidate):
        service.create(make_candidate())
        with pytest.raises(InvoiceValidationError) as exc:
            service.save(as_save("factura-2", make_candidate(invoice_number="FS-2025-0001")))
        assert exc.value.fields == ["invoice_number"]

    def test_new_invoice_number_year_mismatch(self, service, make_candidate):
        with pytest.raises(InvoiceValidationError) as exc:
            service.save(as_save("factura-1", make_candidate(invoice_number="FS-2024-0001")))
        assert "invoice_number" in exc.value.fields

    def test_illegal_status_from_draft(self, service, make_candidate):
        draft = service.create(make_candidate())
        with pytest.raises(InvalidStatusTransitionError):
            service.save(as_save(draft.id, make_candidate(status=InvoiceStatus.OVERDUE)))


class TestStatusTransitions:
    def test_transition_table(self):
        assert can_transition(InvoiceStatus.DRAFT, InvoiceStatus.PENDING)
        assert can_transition(InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)
        assert can_transition(InvoiceStatus.PAID, InvoiceStatus.CANCELLED)
        assert not can_transition(InvoiceStatus.PAID, InvoiceStatus.PENDING)
        assert not can_transition(InvoiceStatus.CANCELLED, InvoiceStatus.DRAFT)
        assert not can_transition(InvoiceStatus.PENDING, InvoiceStatus.DRAFT)

    def test_pending_to_paid(self, service, make_candidate, clock):
        invoice = service.create(make_candidate(status=InvoiceStatus.PENDING))
        clock.advance(days=2)
        paid = service.set_status(invoice.id, InvoiceStatus.PAID)
        assert paid.status == InvoiceStatus.PAID
        assert paid.status_changed_at == clock.now()
        assert paid.invoice_number == invoice.invoice_number

    def test_illegal_transition(self, service, make_candidate):
        invoice = service.create(make_candidate(status=InvoiceStatus.PAID))
        with pytest.raises(InvalidStatusTransitionError):
            service.set_status(invoice.id, InvoiceStatus.PENDING)

    def test_same_status_is_noop(self, service, make_candidate, clock):
        invoice = service.create(make_candidate(status=InvoiceStatus.PENDING))
        clock.advance(days=1)
        assert service.set_status(invoice.id, InvoiceStatus.PENDING).status_changed_at == invoice.status_changed_at

    def test_missing_invoice(self, service):
        assert service.set_status("no-existe", InvoiceStatus.PAID) is None
        assert service.cancel("no-existe") is None

    def test_cancel_keeps_record(self, service, make_candidate):
        invoice = service.create(make_candidate(status=InvoiceStatus.PAID))
        cancelled = service.cancel(invoice.id)
        assert cancelled.status == InvoiceStatus.CANCELLED
        assert service.get(invoice.id).status == InvoiceStatus.CANCELLED

    def test_cancelled_is_terminal(self, service, make_candidate):
        invoice = service.create(make_candidate(status=InvoiceStatus.CANCELLED))
        with pytest.raises(InvalidStatusTransitionError):
            service.set_status(invoice.id, InvoiceStatus.PAID)

    def test_sweep_overdue(self, service, make_candidate, at):
        late = service.create(make_candidate(
            status=InvoiceStatus.PENDING, issue_date=at(2025, 5, 1), due_date=at(2025, 5, 31)
        ))
        on_time = service.create(make_candidate(status=InvoiceStatus.PENDING))
        draft = service.create(make_candidate(issue_date=at(2025, 5, 1), due_date=at(2025, 5, 31)))

        swept = service.sweep_overdue()
        assert [invoice.id for invoice in swept] == [late.id]
        assert service.get(late.id).status == InvoiceStatus.OVERDUE
        assert service.get(on_time.id).status == InvoiceStatus.PENDING
        assert service.get(draft.id).status == InvoiceStatus.DRAFT

    def test_status_audit(self, service, make_candidate, audit):
        invoice = service.create(make_candidate(status=InvoiceStatus.PENDING))
        service.set_status(invoice.id, InvoiceStatus.PAID)
        event = audit.list()[0]
        assert event.action == "status"
        assert event.details["from"] == "PENDING" and event.details["to"] == "PAID"


class TestDeleteDraft:
    def test_delete_draft(self, service, make_candidate, invoice_repo):
        draft = service.create(make_candidate())
        assert service.delete_draft(draft.id) is True
        assert invoice_repo.get_by_id(draft.id) is None

    def test_paid_not_deleted(self, service, make_candidate, invoice_repo):
        invoice = service.create(make_candidate(status=InvoiceStatus.PAID))
        before = invoice_repo.list()
        assert service.delete_draft(invoice.id) is False
        assert invoice_repo.list() == before

    def test_missing(self, service):
        assert service.delete_draft("no-existe") is False

    def test_other_tenant(self, service, make_candidate):
        draft = service.create(make_candidate(), "empresa-a")
        assert service.delete_draft(draft.id, "empresa-b") is False
        assert service.get(draft.id, "empresa-a").id == draft.id


class TestQueries:
    def test_get_missing(self, service):
        with pytest.raises(NotFoundError):
            service.get("no-existe")

    def test_list_filters(self, service, make_candidate, at):
        older = service.create(make_candidate(issue_date=at(2025, 5, 2), due_date=at(2025, 6, 1)))
        newer = service.create(make_candidate(series="R", status=InvoiceStatus.PENDING))

        assert [i.id for i in service.list()] == [newer.id, older.id]
        assert [i.id for i in service.list(filters=InvoiceFilters(series="R"))] == [newer.id]
        assert [i.id for i in service.list(filters=InvoiceFilters(status=InvoiceStatus.DRAFT))] == [older.id]
        assert len(service.list(filters=InvoiceFilters(search="acme"))) == 2
        assert [i.id for i in service.list(filters=InvoiceFilters(search="r-2025"))] == [newer.id]
        assert service.list(filters=InvoiceFilters(fiscal_year=2024)) == []

    def test_preview_does_not_reserve(self, service, make_candidate, invoice_repo):
        service.create(make_candidate())
        assert service.preview_next_number().invoice_number == "FS-2025-0002"
        assert service.preview_next_number().invoice_number == "FS-2025-0002"
        assert service.preview_next_number(series="R").invoice_number == "R-2025-0001"
        assert len(invoice_repo.list()) == 1


# ===== REPOSITORIO SQLALCHEMY =====

class TestSQLAlchemyInvoiceRepository:
    @pytest.fixture
    def sql_service(self, db_session, config, clock):
        return InvoiceLifecycleService(SQLAlchemyInvoiceRepository(db_session, "public"), config, clock)

    def test_round_trip(self, sql_service, make_candidate):
        created = sql_service.create(make_candidate())
        stored = sql_service.get(created.id)
        assert stored.invoice_number == "FS-2025-0001"
        assert stored.total_amount == Decimal("242")
        assert stored.status == InvoiceStatus.DRAFT
        assert [item.description for item in stored.items] == ["Consultoría"]

    def test_edit_replaces_items(self, sql_service, make_candidate):
        draft = sql_service.create(make_candidate())
        items = [
            InvoiceItemCreate(description="Diseño", quantity=Decimal("1"), price_unit=Decimal("50")),
            InvoiceItemCreate(description="Hosting", quantity=Decimal("12"), price_unit=Decimal("5")),
        ]
        sql_service.save(as_save(draft.id, make_candidate(items=items)))
        stored = sql_service.get(draft.id)
        assert [item.description for item in stored.items] == ["Diseño", "Hosting"]
        assert stored.base_total == Decimal("110")

    def test_lifecycle(self, sql_service, make_candidate):
        invoice = sql_service.create(make_candidate(status=InvoiceStatus.PENDING))
        sql_service.set_status(invoice.id, InvoiceStatus.PAID)
        assert sql_service.get(invoice.id).status == InvoiceStatus.PAID
        assert sql_service.delete_draft(invoice.id) is False

        draft = sql_service.create(make_candidate())
        assert sql_service.delete_draft(draft.id) is True
        assert [i.id for i in sql_service.list()] == [invoice.id]

    def test_unique_sequence_constraint(self, sql_service, make_candidate, db_session):
        invoice = sql_service.create(make_candidate())
        clone = invoice.model_copy(update={"id": "otra-factura"})
        with pytest.raises(DuplicateInvoiceNumberError):
            SQLAlchemyInvoiceRepository(db_session).save(clone)
        assert [i.id for i in sql_service.list()] == [invoice.id]

    def test_number_taken_by_another_writer_is_reallocated(
        self, sql_service, make_candidate, db_session, config, clock
    ):
        first = sql_service.create(make_candidate())
        other_worker = InvoiceLifecycleService(StaleLedgerRepository(db_session, "public"), config, clock)

        second = other_worker.create(make_candidate())
        assert first.invoice_number == "FS-2025-0001"
        assert second.invoice_number == "FS-2025-0002"
        assert sorted(i.invoice_number for i in sql_service.list()) == ["FS-2025-0001", "FS-2025-0002"]

    def test_explicit_number_taken_by_another_writer_conflicts(
        self, sql_service, make_candidate, db_session, config, clock
    ):
        sql_service.create(make_candidate())
        other_worker = InvoiceLifecycleService(StaleLedgerRepository(db_session, "public"), config, clock)

        with pytest.raises(ConflictError):
            other_worker.create(make_candidate(invoice_number="FS-2025-0001"), reassign=False)
        assert len(sql_service.list()) == 1

    def test_derived_rates_survive_round_trip(self, sql_service, config, clock, sample_client):
        result = reconcile_invoices_csv(
            csv_text("FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,30.00,10.00,0.00,40.00"),
            {sample_client.name: sample_client.id}, [], config, clock,
        )
        created = commit_import(sql_service, result.invoices)[0]
        stored = sql_service.get(created.id)
        assert created.vat_rate == Decimal("0.33333333")
        assert stored.vat_rate == created.vat_rate
        assert stored.irpf_rate == created.irpf_rate


# ===== CSV =====

class TestCsvReconciliation:
    @pytest.fixture
    def reconcile(self, sample_client, config, clock):
        lookup = {sample_client.name: sample_client.id}

        def _reconcile(text, existing=(), strict=False):
            return reconcile_invoices_csv(text, lookup, list(existing), config, clock, strict=strict)
        return _reconcile

    def test_clean_import(self, reconcile, sample_client):
        result = reconcile(csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PENDING,200.00,42.00,0.00,242.00",
            "FS-2025-002,02/06/2025,02/07/2025,acme consultores s.l.,PAID,100.00,21.00,15.00,106.00",
        ))
        assert result.success
        assert result.errors == [] and result.warnings == []
        assert result.imported == 2
        first = result.invoices[0]
        assert first.invoice_number == "FS-2025-0001"
        assert first.client_id == sample_client.id
        assert first.status == InvoiceStatus.PENDING
        assert first.vat_rate == Decimal("0.21")
        assert result.invoices[1].irpf_rate == Decimal("0.15")

    def test_duplicate_in_batch(self, reconcile):
        result = reconcile(csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PENDING,200.00,42.00,0.00,242.00",
            "FS-2025-001,02/06/2025,02/07/2025,Acme Consultores S.L.,PENDING,100.00,21.00,0.00,121.00",
            "FS-2025-002,03/06/2025,03/07/2025,Acme Consultores S.L.,PENDING,100.00,21.00,0.00,121.00",
        ))
        assert not result.success
        assert result.errors == ["Secuencia duplicada en FS-2025: 1"]
        assert [c.invoice_number for c in result.invoices] == ["FS-2025-0002"]

    def test_gap_is_warning(self, reconcile):
        result = reconcile(csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
            "FS-2025-004,02/06/2025,02/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
        ))
        assert result.success
        assert result.warnings == ["Secuencias ausentes en FS-2025: 2, 3"]
        assert result.imported == 2

    def test_row_errors(self, reconcile):
        result = reconcile(csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00",
            "FS-2025-002,2025-06-01,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
            "FS-25-3,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
            "FS-2025-004,01/06/2025,01/07/2025,Nadie S.A.,PAID,200.00,42.00,0.00,242.00",
            "FS-2025-005,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200,00,42.00,0.00,242.00",
        ))
        assert not result.success
        assert result.invoices == []
        assert result.errors[0] == "Fila 2: Número de columnas incorrecto (esperadas 9, hay 8)"
        assert result.errors[1].startswith("Fila 3: Formato de fecha")
        assert result.errors[2].startswith("Fila 4: Número de factura inválido")
        assert result.errors[3] == "Fila 5: Cliente desconocido: Nadie S.A."
        assert result.errors[4].startswith("Fila 6: Número de columnas incorrecto")

    def test_fiscal_rules_are_row_errors(self, reconcile):
        result = reconcile(csv_text(
            "FS-2025-001,01/04/2025,15/06/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
            "FS-2024-002,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
            "FS-2025-003,20/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
        ))
        assert len(result.errors) == 3
        assert result.errors[0].startswith("Fila 2: El plazo de pago supera los 60 días")
        assert result.invoices == []

    def test_totals_mismatch_is_warning(self, reconcile):
        result = reconcile(csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,250.00",
        ))
        assert result.success
        assert result.imported == 1
        assert result.warnings == ["Fila 2: El total no cuadra: esperado 242.00, recibido 250.00"]

    def test_missing_status_defaults_to_draft(self, reconcile):
        result = reconcile(csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,,200.00,42.00,0.00,242.00",
        ))
        assert result.invoices[0].status == InvoiceStatus.DRAFT
        assert result.warnings == ["Fila 2: Estado vacío; se importa como DRAFT"]

    def test_existing_numbers_skipped(self, reconcile):
        text = csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
            "FS-2025-002,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
        )
        result = reconcile(text, existing=["FS-2025-0001"])
        assert result.success
        assert result.skipped == 1
        assert [c.invoice_number for c in result.invoices] == ["FS-2025-0002"]

        strict = reconcile(text, existing=["FS-2025-0001"], strict=True)
        assert not strict.success
        assert strict.errors == ["Fila 2: La factura FS-2025-0001 ya existe"]

    def test_bom_legacy_and_blank_lines(self, reconcile):
        text = "\ufeff" + csv_text(
            "2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
            "",
        )
        result = reconcile(text)
        assert result.success
        assert result.invoices[0].invoice_number == "FS-2025-0001"
        assert result.warnings == ["Fila 2: Número en formato antiguo 2025-001; se importa como FS-2025-0001"]

    def test_empty_file(self, reconcile):
        result = reconcile(CSV_HEADER + "\n")
        assert not result.success
        assert result.imported == 0

    def test_commit_import_reproduces_totals(self, reconcile, service):
        result = reconcile(csv_text(
            "FS-2025-003,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,100.00,21.00,15.00,106.00",
            "FS-2025-004,01/05/2025,31/05/2025,Acme Consultores S.L.,OVERDUE,200.00,42.00,0.00,242.00",
        ))
        created = commit_import(service, result.invoices)

        paid, overdue = created
        assert paid.invoice_number == "FS-2025-0003"
        assert paid.status == InvoiceStatus.PAID
        assert round(paid.total_amount, 2) == Decimal("106.00")
        assert overdue.status == InvoiceStatus.OVERDUE
        assert service.preview_next_number().sequence == 5

    def test_commit_import_never_renumbers(self, reconcile, service, make_candidate):
        result = reconcile(csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
            "FS-2025-002,02/06/2025,02/07/2025,Acme Consultores S.L.,PAID,100.00,21.00,0.00,121.00",
        ))
        assert result.success
        service.create(make_candidate())

        with pytest.raises(InvoiceValidationError) as exc:
            commit_import(service, result.invoices)
        assert [issue.message for issue in exc.value.issues] == ["El número FS-2025-0001 ya existe"]
        assert [i.invoice_number for i in service.list()] == ["FS-2025-0001"]

    def test_cr_line_endings(self, reconcile):
        text = "\r".join((
            CSV_HEADER,
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
        )) + "\r"
        result = reconcile(text)
        assert result.success
        assert result.imported == 1

    def test_oversized_field_reported(self, reconcile):
        result = reconcile(csv_text(
            '"' + "A" * 200000 + '",01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00',
        ))
        assert not result.success
        assert result.imported == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Fila 2: CSV mal formado")

    def test_multiline_field_keeps_physical_rows(self, reconcile):
        result = reconcile(csv_text(
            'FS-2025-001,01/06/2025,01/07/2025,"Acme\nSucursal",PAID,200.00,42.00,0.00,242.00',
            "FS-2025-002,01/06/2025,01/07/2025,Nadie S.A.,PAID,200.00,42.00,0.00,242.00",
        ))
        assert result.errors[0].startswith("Fila 2: Cliente desconocido")
        assert result.errors[1] == "Fila 4: Cliente desconocido: Nadie S.A."

    def test_derived_rates_are_quantized(self, reconcile):
        result = reconcile(csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,30.00,10.00,0.00,40.00",
        ))
        assert result.invoices[0].vat_rate == Decimal("0.33333333")


class TestCsvExport:
    def test_format(self, service, make_candidate):
        invoice = service.create(make_candidate())
        content = export_invoices_csv([invoice], "Europe/Madrid")
        lines = content.split("\n")
        assert content.startswith("\ufeff")
        assert lines[0] == "\ufeff" + CSV_HEADER
        assert lines[1] == "FS-2025-0001,10/06/2025,10/07/2025,Acme Consultores S.L.,DRAFT,200.00,42.00,0.00,242.00"

    def test_unknown_client(self, service, make_candidate):
        invoice = service.create(make_candidate()).model_copy(update={"client_name": None})
        assert ",Desconocido," in export_invoices_csv([invoice], "Europe/Madrid")

    def test_export_is_reimportable(self, service, make_candidate, sample_client, config, clock):
        invoice = service.create(make_candidate(status=InvoiceStatus.PENDING))
        content = export_invoices_csv([invoice], config.timezone)

        lookup = {sample_client.name: sample_client.id}
        fresh = reconcile_invoices_csv(content, lookup, [], config, clock)
        assert fresh.success
        assert fresh.invoices[0].invoice_number == invoice.invoice_number

        again = reconcile_invoices_csv(content, lookup, [invoice.invoice_number], config, clock)
        assert again.skipped == 1
        assert again.invoices == []


# ===== ENDPOINTS =====

class TestInvoicesEndpoints:
    @pytest.fixture
    def payload(self, sample_client, at):
        return {
            "client_id": sample_client.id,
            "issue_date": at(2025, 6, 10),
            "due_date": at(2025, 7, 10),
            "items": [{"description": "Diseño web", "quantity": "1", "price_unit": "500"}],
            "vat_rate": "0.21",
        }

    def test_create_and_get(self, api_client, payload):
        response = api_client.post("/invoices/", json=payload)
        assert response.status_code == 201
        data = response.json()
        assert data["invoice_number"] == "FS-2025-0001"
        assert Decimal(data["total_amount"]) == Decimal("605")

        assert api_client.get(f"/invoices/{data['id']}").json()["id"] == data["id"]
        assert api_client.get("/invoices/").json()["total"] == 1

    def test_validation_errors(self, api_client, payload):
        payload["due_date"] = payload["issue_date"] + 61 * MS_PER_DAY
        response = api_client.post("/invoices/", json=payload)
        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "due_date"

    def test_next_number(self, api_client, payload):
        api_client.post("/invoices/", json=payload)
        assert api_client.get("/invoices/next-number").json()["invoice_number"] == "FS-2025-0002"

    def test_edit_and_issue(self, api_client, payload):
        invoice_id = api_client.post("/invoices/", json=payload).json()["id"]

        response = api_client.put(f"/invoices/{invoice_id}", json={**payload, "status": "PENDING"})
        assert response.status_code == 200
        assert response.json()["status"] == "PENDING"

        response = api_client.put(f"/invoices/{invoice_id}", json=payload)
        assert response.status_code == 409

    def test_status_changes(self, api_client, payload):
        invoice_id = api_client.post("/invoices/", json={**payload, "status": "PENDING"}).json()["id"]

        response = api_client.patch(f"/invoices/{invoice_id}/status", json={"status": "PAID"})
        assert response.json()["status"] == "PAID"
        assert api_client.patch(f"/invoices/{invoice_id}/status", json={"status": "DRAFT"}).status_code == 409
        assert api_client.post(f"/invoices/{invoice_id}/cancel").json()["status"] == "CANCELLED"
        assert api_client.patch("/invoices/no-existe/status", json={"status": "PAID"}).status_code == 404

    def test_delete(self, api_client, payload):
        draft_id = api_client.post("/invoices/", json=payload).json()["id"]
        issued_id = api_client.post("/invoices/", json={**payload, "status": "PENDING"}).json()["id"]

        assert api_client.delete(f"/invoices/{issued_id}").status_code == 409
        assert api_client.delete(f"/invoices/{draft_id}").json() == {"deleted": True}
        assert api_client.delete(f"/invoices/{draft_id}").status_code == 404

    def test_import_and_commit(self, api_client, sample_client):
        content = csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
        ).encode("utf-8")
        response = api_client.post("/invoices/import", files={"file": ("facturas.csv", content, "text/csv")})
        assert response.status_code == 200
        preview = response.json()
        assert preview["success"] and preview["imported"] == 1

        response = api_client.post("/invoices/import/commit", json={"invoices": preview["invoices"]})
        assert response.status_code == 201
        assert response.json()[0]["invoice_number"] == "FS-2025-0001"

        again = api_client.post("/invoices/import", files={"file": ("facturas.csv", content, "text/csv")}).json()
        assert again["skipped"] == 1

    def test_commit_rejects_taken_number(self, api_client, payload):
        content = csv_text(
            "FS-2025-001,01/06/2025,01/07/2025,Acme Consultores S.L.,PAID,200.00,42.00,0.00,242.00",
        ).encode("utf-8")
        preview = api_client.post("/invoices/import", files={"file": ("facturas.csv", content, "text/csv")}).json()
        api_client.post("/invoices/", json=payload)

        response = api_client.post("/invoices/import/commit", json={"invoices": preview["invoices"]})
        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "invoice_number"
        assert api_client.get("/invoices/").json()["total"] == 1

    def test_import_malformed_csv(self, api_client):
        content = ('"' + "A" * 200000 + '"\n').encode("utf-8")
        response = api_client.post("/invoices/import", files={"file": ("facturas.csv", content, "text/csv")})
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_export(self, api_client, payload):
        api_client.post("/invoices/", json=payload)
        response = api_client.get("/invoices/export")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.content.startswith(b"\xef\xbb\xbf")
        assert b"FS-2025-0001" in response.content

    def test_sweep_overdue(self, api_client, payload, at):
        api_client.post("/invoices/", json={
            **payload, "status": "PENDING", "issue_date": at(2025, 5, 1), "due_date": at(2025, 5, 31)
        })
        response = api_client.post("/invoices/sweep-overdue")
        assert response.json()["total"] == 1
        assert response.json()["invoices"][0]["status"] == "OVERDUE"
