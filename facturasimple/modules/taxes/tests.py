"""
Tests para el módulo de Impuestos

Cubren:
- Cálculo con impuestos excluidos e incluidos
- Retención IRPF
- Multiplicador degenerado con impuestos incluidos
- Comprobación aritmética de totales
- Endpoints /taxes
"""

import pytest
from decimal import Decimal

from facturasimple.common.exceptions import TaxConfigurationError
from facturasimple.modules.taxes.calculator import TaxCalculator, get_standard_spanish_taxes, round2


@pytest.fixture
def calculator():
    return TaxCalculator()


class TestRounding:
    def test_round_half_up(self):
        assert round2(Decimal("2.675")) == Decimal("2.68")
        assert round2("0.005") == Decimal("0.01")
        assert round2(10) == Decimal("10.00")


class TestTaxesExcluded:
    """Precios como base imponible"""

    def test_standard_vat(self, calculator):
        totals = calculator.compute_totals(
            [{"quantity": 2, "price_unit": 100}], Decimal("0.21"), Decimal("0")
        ).rounded()
        assert totals.base_total == Decimal("200.00")
        assert totals.vat_amount == Decimal("42.00")
        assert totals.irpf_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("242.00")

    def test_irpf_withholding(self, calculator):
        totals = calculator.compute_totals(
            [{"quantity": 1, "price_unit": 1000}], Decimal("0.21"), Decimal("0.15")
        ).rounded()
        assert totals.vat_amount == Decimal("210.00")
        assert totals.irpf_amount == Decimal("150.00")
        assert totals.total_amount == Decimal("1060.00")

    def test_item_subtotals(self, calculator):
        totals = calculator.compute_totals(
            [{"quantity": 3, "price_unit": "10.50"}, {"quantity": 1, "price_unit": 5}],
            Decimal("0.10"), Decimal("0")
        )
        assert totals.item_subtotals == [Decimal("31.50"), Decimal("5")]
        assert totals.base_total == Decimal("36.50")

    def test_amounts_are_not_rounded(self, calculator):
        totals = calculator.compute_totals([{"quantity": 1, "price_unit": "0.333"}], Decimal("0.21"), 0)
        assert totals.vat_amount == Decimal("0.333") * Decimal("0.21")


class TestTaxesIncluded:
    """Precios brutos desglosados hacia atrás"""

    def test_standard_vat(self, calculator):
        totals = calculator.compute_totals(
            [{"quantity": 1, "price_unit": 242}], Decimal("0.21"), Decimal("0"), taxes_included=True
        )
        rounded = totals.rounded()
        assert rounded.base_total == Decimal("200.00")
        assert rounded.vat_amount == Decimal("42.00")
        assert rounded.total_amount == Decimal("242.00")
        assert totals.total_amount == Decimal("242")

    def test_net_prices(self, calculator):
        totals = calculator.compute_totals(
            [{"quantity": 2, "price_unit": "121"}], Decimal("0.21"), Decimal("0"), taxes_included=True
        ).rounded()
        assert totals.net_prices == [Decimal("200.00")]

    def test_degenerate_multiplier_rejected(self, calculator):
        with pytest.raises(TaxConfigurationError):
            calculator.compute_totals(
                [{"quantity": 1, "price_unit": 100}], Decimal("0"), Decimal("1"), taxes_included=True
            )

    def test_degenerate_multiplier_allowed_when_excluded(self, calculator):
        totals = calculator.compute_totals([{"quantity": 1, "price_unit": 100}], Decimal("0"), Decimal("1"))
        assert totals.total_amount == Decimal("0")


class TestTotalsMatch:
    def test_matching(self):
        assert TaxCalculator.totals_match("200", "42", "0", "242")
        assert TaxCalculator.totals_match("100.004", "21", "0", "121.00")

    def test_mismatch(self):
        assert not TaxCalculator.totals_match("200", "42", "0", "240")


class TestTaxesEndpoints:
    def test_rates(self, api_client):
        response = api_client.get("/taxes/rates")
        assert response.status_code == 200
        data = response.json()
        assert len(data["vat_rates"]) == len(get_standard_spanish_taxes())
        assert Decimal(data["default_vat_rate"]) == Decimal("0.21")

    def test_calculate(self, api_client):
        response = api_client.post("/taxes/calculate", json={
            "items": [{"quantity": 2, "price_unit": 100}],
            "vat_rate": 0.21,
        })
        assert response.status_code == 200
        assert Decimal(response.json()["total_amount"]) == Decimal("242.00")

    def test_calculate_degenerate_multiplier(self, api_client):
        response = api_client.post("/taxes/calculate", json={
            "items": [{"quantity": 1, "price_unit": 100}],
            "vat_rate": 0,
            "irpf_rate": 1,
            "taxes_included": True,
        })
        assert response.status_code == 400
