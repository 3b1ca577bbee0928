from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

# Import database components
from facturasimple.database.database import sync_engine, Base

# Import domain errors
from facturasimple.common.exceptions import (
    ConflictError, ImmutableInvoiceError, InvalidStatusTransitionError,
    InvoiceValidationError, NotFoundError, TaxConfigurationError
)

# Import routers
from facturasimple.modules.clients.router import router as clients_router
from facturasimple.modules.invoices.router import router as invoices_router
from facturasimple.modules.reports.router import router as reports_router
from facturasimple.modules.taxes.router import taxes_router

# Import models for table creation
import facturasimple.modules.clients.models
import facturasimple.modules.invoices.models

from facturasimple.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="FacturaSimple API",
    description="Facturación para autónomos y pymes: numeración fiscal, IVA/IRPF y conciliación CSV",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Add your frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain errors -> HTTP
@app.exception_handler(InvoiceValidationError)
async def invoice_validation_handler(request: Request, exc: InvoiceValidationError):
    return JSONResponse(status_code=422, content=exc.to_dict())


@app.exception_handler(ImmutableInvoiceError)
async def immutable_invoice_handler(request: Request, exc: ImmutableInvoiceError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(InvalidStatusTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidStatusTransitionError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(TaxConfigurationError)
async def tax_configuration_handler(request: Request, exc: TaxConfigurationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


# Include routers
app.include_router(clients_router)
app.include_router(invoices_router)
app.include_router(taxes_router)
app.include_router(reports_router)

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)

@app.get("/")
async def read_root():
    return {
        "message": "FacturaSimple API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}

@app.on_event("startup")
async def startup_event():
    logger.info("FacturaSimple API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"Default series: {settings.DEFAULT_SERIES}, fiscal timezone: {settings.FISCAL_TIMEZONE}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FacturaSimple API shutting down...")
