from functools import lru_cache
from typing import Annotated
from fastapi import Depends

from facturasimple.common.audit import AuditTrail
from facturasimple.core.clock import Clock, SystemClock
from facturasimple.core.config import InvoicingConfig, settings


@lru_cache
def get_invoicing_config() -> InvoicingConfig:
    return InvoicingConfig.from_settings(settings)


@lru_cache
def get_clock() -> Clock:
    return SystemClock()


@lru_cache
def get_audit_trail() -> AuditTrail:
    return AuditTrail(max_size=settings.AUDIT_BUFFER_SIZE, clock=get_clock())


ConfigDependency = Annotated[InvoicingConfig, Depends(get_invoicing_config)]
ClockDependency = Annotated[Clock, Depends(get_clock)]
