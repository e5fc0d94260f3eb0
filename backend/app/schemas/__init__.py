"""
Schemas Pydantic per il progetto Tabula

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle richieste e risposte API.
"""

from app.schemas.invoice import (
    CalculationConfig,
    CalculationItem,
    InvoiceCreate,
    InvoiceCreationResponse,
    InvoiceDetail,
    InvoiceList,
    InvoiceListItem,
    InvoiceProductInput,
    InvoiceRowRead,
    InvoiceStatus,
    InvoiceStatusUpdate,
    InvoiceTotals,
    LineTotals,
    NextInvoiceNumber,
    NumberingStats,
    VatBreakdownEntry,
)
from app.schemas.invoice_series import (
    InvoiceSeriesCreate,
    InvoiceSeriesRead,
    InvoiceSeriesUpdate,
)

__all__ = [
    "CalculationConfig",
    "CalculationItem",
    "InvoiceCreate",
    "InvoiceCreationResponse",
    "InvoiceDetail",
    "InvoiceList",
    "InvoiceListItem",
    "InvoiceProductInput",
    "InvoiceRowRead",
    "InvoiceStatus",
    "InvoiceStatusUpdate",
    "InvoiceTotals",
    "LineTotals",
    "NextInvoiceNumber",
    "NumberingStats",
    "VatBreakdownEntry",
    "InvoiceSeriesCreate",
    "InvoiceSeriesRead",
    "InvoiceSeriesUpdate",
]
