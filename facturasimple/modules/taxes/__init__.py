"""
Módulo de Impuestos - FacturaSimple

Cálculo puro de IVA e IRPF para facturas españolas, en modo de precios
netos o con impuestos incluidos. No persiste nada.
"""

from .calculator import TaxCalculator, round2, get_standard_spanish_taxes
from .schemas import TaxTotals, TaxLine

__all__ = ["TaxCalculator", "round2", "get_standard_spanish_taxes", "TaxTotals", "TaxLine"]
