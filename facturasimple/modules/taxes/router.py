from fastapi import APIRouter

from facturasimple.dependencies.configDependencies import ConfigDependency
from facturasimple.modules.taxes.calculator import TaxCalculator, get_standard_spanish_taxes, to_decimal
from facturasimple.modules.taxes.schemas import TaxCalculationRequest, TaxRatesOut, TaxTotals

taxes_router = APIRouter(prefix="/taxes", tags=["Taxes"])


@taxes_router.get("/rates", response_model=TaxRatesOut)
def list_tax_rates(config: ConfigDependency):
    """
    Listar tipos de IVA vigentes y la retención IRPF estándar
    """
    return TaxRatesOut(
        vat_rates=get_standard_spanish_taxes(),
        irpf_rate=to_decimal(config.irpf_rate),
        default_vat_rate=to_decimal(config.default_vat_rate),
    )


@taxes_router.post("/calculate", response_model=TaxTotals)
def calculate_totals(request: TaxCalculationRequest):
    """
    Calcular base imponible, IVA, IRPF y total

    Con ``taxes_included`` los precios se desglosan hacia atrás.
    Los importes se devuelven redondeados a 2 decimales.
    """
    totals = TaxCalculator().compute_totals(
        request.items, request.vat_rate, request.irpf_rate, request.taxes_included
    )
    return totals.rounded()
