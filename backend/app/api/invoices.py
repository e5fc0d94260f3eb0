"""
Router FastAPI per la Fatturazione
Progetto: Tabula (Database no-code e Fatturazione)

Definisce gli endpoint API per la creazione, la consultazione,
il cambio di stato e l'eliminazione delle fatture di un tenant.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceCreationResponse,
    InvoiceDetail,
    InvoiceList,
    InvoiceStatusUpdate,
    NextInvoiceNumber,
)
from app.services.invoice_series_service import invoice_series_service
from app.services.invoice_service import invoice_service
from app.services.invoice_system_service import invoice_system_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Router con prefix e tag
router = APIRouter(
    prefix="/tenants/{tenant_id}/invoices",
    tags=["Fatturazione"],
)


# -------------------------------------------------------------------
# Endpoints per Fatture
# -------------------------------------------------------------------

@router.post(
    "",
    name="fattura_crea",
    summary="Crea fattura",
    description="Crea una fattura con le sue righe, assegnando il numero della serie.",
    response_model=InvoiceCreationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    tenant_id: int = Path(..., gt=0, description="Id del tenant"),
    database_id: Optional[int] = Query(None, gt=0, description="Database logico (default: predefinito)"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceCreationResponse:
    """
    Crea una fattura in un'unica transazione.

    Le tabelle di fatturazione vengono create al primo utilizzo.
    Cliente e prodotti non trovati non bloccano la creazione:
    vengono usati i valori forniti e la risposta riporta un avviso.
    """
    return await invoice_service.create_invoice(
        db=db,
        tenant_id=tenant_id,
        data=data,
        database_id=database_id,
    )


@router.get(
    "",
    name="fatture_lista",
    summary="Lista fatture",
    description="Recupera le fatture con i dati del cliente e le statistiche di numerazione.",
    response_model=InvoiceList,
    status_code=status.HTTP_200_OK,
)
async def get_invoices(
    tenant_id: int = Path(..., gt=0, description="Id del tenant"),
    database_id: Optional[int] = Query(None, gt=0, description="Database logico (default: predefinito)"),
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: int = Query(50, ge=1, le=200, description="Elementi per pagina"),
    db: AsyncSession = Depends(get_db),
) -> InvoiceList:
    """
    Recupera la lista paginata delle fatture, più recenti prima.
    """
    return await invoice_service.get_all(
        db=db,
        tenant_id=tenant_id,
        database_id=database_id,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/next-number",
    name="fattura_prossimo_numero",
    summary="Prossimo numero fattura",
    description="Anteprima del prossimo numero della serie, senza consumarlo.",
    response_model=NextInvoiceNumber,
    status_code=status.HTTP_200_OK,
)
async def get_next_invoice_number(
    tenant_id: int = Path(..., gt=0, description="Id del tenant"),
    series: Optional[str] = Query(None, min_length=1, max_length=20, description="Serie (default: serie del tenant)"),
    invoice_date: Optional[date] = Query(None, description="Data di emissione (default: oggi)"),
    database_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db),
) -> NextInvoiceNumber:
    """
    Restituisce il numero che riceverebbe la prossima fattura.
    """
    tenant, database = await invoice_system_service.resolve_database(db, tenant_id, database_id)
    tables = await invoice_system_service.get_invoice_tables(db, database.id)
    config = await invoice_series_service.resolve_config(db, tenant, database.id, series)
    invoice_number = await invoice_system_service.get_next_invoice_number(
        db, tenant.id, database.id, tables, config, invoice_date
    )
    logger.debug("Anteprima numero fattura %s (tenant %s)", invoice_number, tenant_id)
    return NextInvoiceNumber(series=config.series, invoice_number=invoice_number)


@router.get(
    "/{invoice_id}",
    name="fattura_dettaglio",
    summary="Dettaglio fattura",
    description="Recupera una fattura con righe e dati del cliente.",
    response_model=InvoiceDetail,
    status_code=status.HTTP_200_OK,
)
async def get_invoice(
    tenant_id: int = Path(..., gt=0, description="Id del tenant"),
    invoice_id: int = Path(..., gt=0, description="Id della riga fattura"),
    database_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    """
    Recupera i dettagli di una fattura per ID.
    """
    return await invoice_service.get_by_id(
        db=db,
        tenant_id=tenant_id,
        invoice_id=invoice_id,
        database_id=database_id,
    )


@router.patch(
    "/{invoice_id}",
    name="fattura_aggiorna_stato",
    summary="Aggiorna stato fattura",
    description="Aggiorna lo stato della fattura (draft, issued, paid, overdue, cancelled).",
    response_model=InvoiceDetail,
    status_code=status.HTTP_200_OK,
)
async def update_invoice_status(
    data: InvoiceStatusUpdate,
    tenant_id: int = Path(..., gt=0, description="Id del tenant"),
    invoice_id: int = Path(..., gt=0, description="Id della riga fattura"),
    database_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    """
    Aggiorna lo stato di una fattura.

    NOTA: numero, importi e righe non sono modificabili dopo la creazione.
    """
    return await invoice_service.update_status(
        db=db,
        tenant_id=tenant_id,
        invoice_id=invoice_id,
        data=data,
        database_id=database_id,
    )


@router.delete(
    "/{invoice_id}",
    name="fattura_elimina",
    summary="Elimina fattura",
    description="Elimina una fattura insieme alle sue righe.",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_invoice(
    tenant_id: int = Path(..., gt=0, description="Id del tenant"),
    invoice_id: int = Path(..., gt=0, description="Id della riga fattura"),
    database_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Elimina fattura e righe in un'unica transazione."""
    await invoice_service.delete_invoice(
        db=db,
        tenant_id=tenant_id,
        invoice_id=invoice_id,
        database_id=database_id,
    )
