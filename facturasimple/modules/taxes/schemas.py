from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import List


class TaxLine(BaseModel):
    quantity: Decimal = Field(..., gt=0, description="Cantidad debe ser mayor a 0")
    price_unit: Decimal = Field(..., ge=0, description="Precio unitario (neto o bruto según modo)")


class TaxCalculationRequest(BaseModel):
    items: List[TaxLine] = Field(..., min_length=1, description="Debe incluir al menos un item")
    vat_rate: Decimal = Field(Decimal("0.21"), ge=0, le=1, description="Tasa de IVA (ej. 0.21 para 21%)")
    irpf_rate: Decimal = Field(Decimal("0"), ge=0, le=1, description="Retención IRPF (ej. 0.15 para 15%)")
    taxes_included: bool = Field(False, description="Si es True, los precios ya incluyen IVA/IRPF")


class TaxTotals(BaseModel):
    """
    Resultado del cálculo de impuestos.

    Los importes se guardan sin redondear; usar ``rounded()`` solo en los
    límites de presentación o comparación.
    """
    base_total: Decimal
    vat_amount: Decimal
    irpf_amount: Decimal
    total_amount: Decimal
    item_subtotals: List[Decimal]
    net_prices: List[Decimal]

    def rounded(self) -> "TaxTotals":
        from facturasimple.modules.taxes.calculator import round2
        return TaxTotals(
            base_total=round2(self.base_total),
            vat_amount=round2(self.vat_amount),
            irpf_amount=round2(self.irpf_amount),
            total_amount=round2(self.total_amount),
            item_subtotals=[round2(v) for v in self.item_subtotals],
            net_prices=[round2(v) for v in self.net_prices],
        )


class VatRateOut(BaseModel):
    name: str
    description: str
    rate: Decimal
    applicable_to: str

    @field_validator('rate')
    @classmethod
    def validate_rate(cls, v):
        if v < 0 or v > 1:
            raise ValueError('La tasa debe estar entre 0 y 1')
        return v


class TaxRatesOut(BaseModel):
    vat_rates: List[VatRateOut]
    irpf_rate: Decimal
    default_vat_rate: Decimal
