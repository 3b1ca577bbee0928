from pydantic import BaseModel
from decimal import Decimal
from typing import Dict, List


class DashboardStats(BaseModel):
    income_month: Decimal
    pending_amount: Decimal
    overdue_count: int
    invoice_count: int
    by_status: Dict[str, int]


class NumberingAuditReport(BaseModel):
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    duplicates: Dict[str, List[int]]
    gaps: Dict[str, List[int]]
