"""
Tests para el módulo de Informes
"""

from decimal import Decimal

from facturasimple.modules.invoices.schemas import InvoiceStatus
from facturasimple.modules.reports.service import dashboard_stats, numbering_audit


class TestDashboardStats:
    def test_figures(self, service, make_candidate, at, clock, config):
        service.create(make_candidate(status=InvoiceStatus.PAID))
        service.create(make_candidate(status=InvoiceStatus.PAID, issue_date=at(2025, 5, 10), due_date=at(2025, 6, 9)))
        service.create(make_candidate(status=InvoiceStatus.PENDING, issue_date=at(2025, 5, 1), due_date=at(2025, 5, 31)))
        service.create(make_candidate(status=InvoiceStatus.PENDING))
        service.create(make_candidate())

        stats = dashboard_stats(service.list(), clock.now(), config.timezone)
        assert stats.income_month == Decimal("242.00")
        assert stats.pending_amount == Decimal("484.00")
        assert stats.overdue_count == 1
        assert stats.invoice_count == 5
        assert stats.by_status["PAID"] == 2
        assert stats.by_status["CANCELLED"] == 0

    def test_empty(self, clock):
        stats = dashboard_stats([], clock.now())
        assert stats.income_month == Decimal("0")
        assert stats.overdue_count == 0


class TestNumberingAudit:
    def test_clean_ledger(self, service, make_candidate):
        service.create(make_candidate())
        service.create(make_candidate())
        report = numbering_audit(service.list())
        assert report.is_valid
        assert report.errors == [] and report.warnings == []

    def test_gaps_are_warnings(self, service, make_candidate):
        service.create(make_candidate())
        service.create(make_candidate(invoice_number="FS-2025-0004"))
        report = numbering_audit(service.list())
        assert report.is_valid
        assert report.gaps == {"FS-2025": [2, 3]}

    def test_deleted_draft_leaves_gap(self, service, make_candidate):
        service.create(make_candidate())
        draft = service.create(make_candidate())
        service.create(make_candidate())
        service.delete_draft(draft.id)
        assert numbering_audit(service.list()).warnings == ["Secuencias ausentes en FS-2025: 2"]

    def test_duplicates_are_errors(self, service, make_candidate):
        invoice = service.create(make_candidate())
        clone = invoice.model_copy(update={"id": "copia"})
        report = numbering_audit([invoice, clone])
        assert not report.is_valid
        assert report.duplicates == {"FS-2025": [1]}


class TestReportsEndpoints:
    def test_dashboard(self, api_client, service, make_candidate):
        service.create(make_candidate(status=InvoiceStatus.PENDING))
        response = api_client.get("/reports/dashboard")
        assert response.status_code == 200
        assert Decimal(response.json()["pending_amount"]) == Decimal("242.00")

    def test_numbering_audit(self, api_client, service, make_candidate):
        service.create(make_candidate())
        service.create(make_candidate(invoice_number="FS-2025-0003"))
        data = api_client.get("/reports/numbering-audit", params={"series": "FS"}).json()
        assert data["is_valid"] is True
        assert data["warnings"] == ["Secuencias ausentes en FS-2025: 2"]
