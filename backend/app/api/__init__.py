"""
API Routes
Progetto: Tabula (Database no-code e Fatturazione)

Aggregazione dei router dell'API.
"""

from fastapi import APIRouter

from app.api import invoice_series, invoices

# Router aggregato
api_router = APIRouter(prefix="/api")

# Le rotte statiche delle serie precedono /invoices/{invoice_id}
api_router.include_router(invoice_series.router)
api_router.include_router(invoices.router)

# Esportazione
__all__ = ["api_router"]
