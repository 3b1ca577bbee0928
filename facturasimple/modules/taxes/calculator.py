"""
Helper para cálculo de impuestos (IVA e IRPF, España)

Dos modos de precio:
- Impuestos excluidos (por defecto): los precios son base imponible y
  Total = Base + IVA - IRPF.
- Impuestos incluidos: los precios son brutos y se desglosa hacia atrás,
  Base = Bruto / (1 + IVA - IRPF).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List

from facturasimple.common.exceptions import TaxConfigurationError
from facturasimple.modules.taxes.schemas import TaxTotals

TWO_PLACES = Decimal('0.01')


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Any) -> Decimal:
    """Redondeo comercial a 2 decimales (ROUND_HALF_UP)."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _line_value(item: Any, name: str) -> Decimal:
    if isinstance(item, dict):
        return to_decimal(item[name])
    return to_decimal(getattr(item, name))


class TaxCalculator:
    """Calculadora pura de totales de factura; no guarda estado."""

    def compute_totals(
        self,
        items: Iterable[Any],
        vat_rate: Any,
        irpf_rate: Any,
        taxes_included: bool = False,
    ) -> TaxTotals:
        """
        Calcular base, IVA, IRPF y total de una factura

        Args:
            items: Líneas con ``quantity`` y ``price_unit`` (objetos o dicts)
            vat_rate: Tasa de IVA entre 0 y 1
            irpf_rate: Tasa de retención IRPF entre 0 y 1
            taxes_included: Si los precios ya incluyen impuestos

        Returns:
            TaxTotals sin redondear

        Raises:
            TaxConfigurationError: si con impuestos incluidos el
                multiplicador 1 + IVA - IRPF no es positivo
        """
        vat = to_decimal(vat_rate)
        irpf = to_decimal(irpf_rate)

        item_gross = [
            _line_value(item, "quantity") * _line_value(item, "price_unit")
            for item in items
        ]
        gross_total = sum(item_gross, Decimal('0'))

        if taxes_included:
            multiplier = Decimal('1') + vat - irpf
            if multiplier <= 0:
                raise TaxConfigurationError(vat_rate, irpf_rate)
            base_total = gross_total / multiplier
            vat_amount = base_total * vat
            irpf_amount = base_total * irpf
            # El total es lo que el usuario introdujo
            total_amount = gross_total
            net_prices = [gross / multiplier for gross in item_gross]
        else:
            base_total = gross_total
            vat_amount = base_total * vat
            irpf_amount = base_total * irpf
            total_amount = base_total + vat_amount - irpf_amount
            net_prices = list(item_gross)

        return TaxTotals(
            base_total=base_total,
            vat_amount=vat_amount,
            irpf_amount=irpf_amount,
            total_amount=total_amount,
            item_subtotals=item_gross,
            net_prices=net_prices,
        )

    @staticmethod
    def totals_match(base_total: Any, vat_amount: Any, irpf_amount: Any, total_amount: Any) -> bool:
        """Comprueba Base + IVA - IRPF == Total a 2 decimales."""
        computed = round2(to_decimal(base_total) + to_decimal(vat_amount) - to_decimal(irpf_amount))
        return computed == round2(total_amount)


def get_standard_spanish_taxes() -> List[Dict]:
    """
    Obtener lista de tipos de IVA estándar en España
    Útil para interfaces de usuario
    """
    return [
        {
            "name": "IVA 21%",
            "description": "Tipo general",
            "rate": Decimal("0.21"),
            "applicable_to": "Mayoría de bienes y servicios"
        },
        {
            "name": "IVA 10%",
            "description": "Tipo reducido",
            "rate": Decimal("0.10"),
            "applicable_to": "Hostelería, transporte, alimentos elaborados"
        },
        {
            "name": "IVA 4%",
            "description": "Tipo superreducido",
            "rate": Decimal("0.04"),
            "applicable_to": "Pan, leche, libros, medicamentos"
        },
        {
            "name": "IVA 0%",
            "description": "Operaciones exentas",
            "rate": Decimal("0"),
            "applicable_to": "Sanidad, educación, operaciones intracomunitarias"
        }
    ]
