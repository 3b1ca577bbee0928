"""
Common mixins for multi-tenant models
"""
from sqlalchemy import BigInteger, Column, String


class TenantMixin:
    """Mixin for multi-tenant models that adds tenant_id and ensures tenant isolation"""

    tenant_id = Column(String(64), nullable=False, index=True)


class TimestampMixin:
    """Mixin for models that need timestamp tracking (epoch milliseconds, set by the service clock)"""

    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)
