"""
Módulo de Informes - FacturaSimple

Panel de cifras y auditoría de numeración fiscal.
"""

from .service import dashboard_stats, numbering_audit

__all__ = ["dashboard_stats", "numbering_audit"]
