from typing import Annotated, Optional
from fastapi import Depends, Header, HTTPException, status

from facturasimple.common.validators import validate_series
from facturasimple.core.config import settings


def get_tenant_id(x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")) -> str:
    """Tenant de la petición; sin cabecera se usa el tenant por defecto."""
    if x_tenant_id is None or not x_tenant_id.strip():
        return settings.DEFAULT_TENANT
    tenant_id = x_tenant_id.strip()
    if not validate_series(tenant_id.replace("-", "").replace("_", "")):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cabecera X-Tenant-ID inválida"
        )
    return tenant_id


TenantId = Annotated[str, Depends(get_tenant_id)]
