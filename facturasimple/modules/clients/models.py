from facturasimple.database.database import Base
from sqlalchemy import Column, String, Text, UniqueConstraint
from facturasimple.common.mixins import TenantMixin, TimestampMixin


class ClientRecord(Base, TenantMixin, TimestampMixin):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    nif = Column(String(20), nullable=False)
    address = Column(Text, nullable=False)
    email = Column(String(200), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "nif", name="uq_client_tenant_nif"),
    )
