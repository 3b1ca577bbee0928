"""
Esquemas Pydantic para el módulo de Clientes

Define la validación de datos de entrada y salida para:
- Client: cliente al que se emiten facturas (NIF/CIF, email, dirección)
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Optional, List

from facturasimple.common.validators import NIF_MIN_LENGTH, clean_nif, validate_nif


class ClientBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Nombre o razón social")
    nif: str = Field(..., min_length=NIF_MIN_LENGTH, max_length=20, description="NIF/CIF")
    address: str = Field(..., min_length=1, max_length=300)
    email: EmailStr

    @field_validator('name', 'address')
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('El campo es obligatorio')
        return v

    @field_validator('nif')
    @classmethod
    def validate_nif_format(cls, v):
        if not validate_nif(v):
            raise ValueError(f'El NIF debe tener al menos {NIF_MIN_LENGTH} caracteres alfanuméricos')
        return clean_nif(v)


class ClientCreate(ClientBase):
    pass


class ClientUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    nif: Optional[str] = Field(None, min_length=NIF_MIN_LENGTH, max_length=20)
    address: Optional[str] = Field(None, min_length=1, max_length=300)
    email: Optional[EmailStr] = None

    @field_validator('nif')
    @classmethod
    def validate_nif_format(cls, v):
        if v is not None and not validate_nif(v):
            raise ValueError(f'El NIF debe tener al menos {NIF_MIN_LENGTH} caracteres alfanuméricos')
        return clean_nif(v) if v is not None else v


class Client(ClientBase):
    id: str
    tenant_id: str
    created_at: int
    updated_at: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ClientList(BaseModel):
    clients: List[Client]
    total: int
