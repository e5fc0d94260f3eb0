"""
Router FastAPI per le Serie di Numerazione
Progetto: Tabula (Database no-code e Fatturazione)

Endpoint CRUD per le serie di numerazione fatture di un tenant.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.invoice_series import InvoiceSeriesCreate, InvoiceSeriesRead, InvoiceSeriesUpdate
from app.services.invoice_series_service import invoice_series_service

router = APIRouter(
    prefix="/tenants/{tenant_id}/invoices/series",
    tags=["Serie Fatture"],
)


@router.get("", response_model=List[InvoiceSeriesRead])
async def get_all_series(
    tenant_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
):
    """Recupera le serie di numerazione del tenant."""
    return await invoice_series_service.get_all(db, tenant_id)


@router.post("", response_model=InvoiceSeriesRead, status_code=status.HTTP_201_CREATED)
async def create_series(
    data: InvoiceSeriesCreate,
    tenant_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
):
    """Crea una nuova serie di numerazione."""
    series = await invoice_series_service.create(db, tenant_id, data)
    await db.commit()
    return series


@router.put("/{series_id}", response_model=InvoiceSeriesRead)
async def update_series(
    data: InvoiceSeriesUpdate,
    tenant_id: int = Path(..., gt=0),
    series_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
):
    """Aggiorna una serie di numerazione."""
    series = await invoice_series_service.update(db, tenant_id, series_id, data)
    await db.commit()
    return series


@router.delete("/{series_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_series(
    tenant_id: int = Path(..., gt=0),
    series_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
):
    """Elimina una serie di numerazione."""
    await invoice_series_service.delete(db, tenant_id, series_id)
    await db.commit()
