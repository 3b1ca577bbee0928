from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator


class Settings(BaseSettings):
    # Database settings
    DATABASE_URL: str = 'sqlite:///./facturasimple.db'

    # Tenancy
    DEFAULT_TENANT: str = 'public'

    # Fiscal numbering (Spain)
    DEFAULT_SERIES: str = 'FS'
    MAX_PAYMENT_TERM_DAYS: int = 60
    SEQUENCE_PADDING: int = 4
    FISCAL_TIMEZONE: str = 'Europe/Madrid'

    # Taxes
    DEFAULT_VAT_RATE: float = 0.21
    IRPF_RATE: float = 0.15
    DEFAULT_IRPF_RATE: float = 0.0
    DEFAULT_DUE_DAYS: int = 30

    # CSV import
    CSV_STRICT_DUPLICATES: bool = False

    # Audit trail
    AUDIT_BUFFER_SIZE: int = 200

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "CSV_STRICT_DUPLICATES", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("SEQUENCE_PADDING")
    @classmethod
    def validate_padding(cls, v):
        if v < 3:
            raise ValueError('SEQUENCE_PADDING debe ser al menos 3')
        return v


class InvoicingConfig(BaseModel):
    """
    Opciones fiscales que consume el núcleo de facturación.

    Se construye una sola vez a partir de ``Settings`` y se inyecta en los
    servicios; ningún componente del núcleo lee ``settings`` directamente.
    """
    default_series: str = Field('FS', min_length=1, pattern=r'^[A-Za-z0-9]+$')
    max_payment_term_days: int = Field(60, ge=0)
    sequence_padding: int = Field(4, ge=3)
    default_vat_rate: float = Field(0.21, ge=0, le=1)
    irpf_rate: float = Field(0.15, ge=0, le=1)
    default_irpf_rate: float = Field(0.0, ge=0, le=1)
    default_due_days: int = Field(30, ge=0)
    timezone: str = 'Europe/Madrid'
    default_tenant: str = 'public'

    @classmethod
    def from_settings(cls, source: Settings) -> "InvoicingConfig":
        return cls(
            default_series=source.DEFAULT_SERIES,
            max_payment_term_days=source.MAX_PAYMENT_TERM_DAYS,
            sequence_padding=source.SEQUENCE_PADDING,
            default_vat_rate=source.DEFAULT_VAT_RATE,
            irpf_rate=source.IRPF_RATE,
            default_irpf_rate=source.DEFAULT_IRPF_RATE,
            default_due_days=source.DEFAULT_DUE_DAYS,
            timezone=source.FISCAL_TIMEZONE,
            default_tenant=source.DEFAULT_TENANT,
        )


settings = Settings()
