"""
Service Layer per le Serie di Numerazione
Progetto: Tabula (Database no-code e Fatturazione)

CRUD delle serie configurate dal tenant e risoluzione della
configurazione di numerazione da usare per una nuova fattura.
"""

import logging
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import DuplicateError, NotFoundError
from app.models import InvoiceSeries, Tenant
from app.schemas.invoice_series import InvoiceSeriesCreate, InvoiceSeriesUpdate
from app.services.invoice_system_service import NumberingConfig, invoice_system_service

logger = logging.getLogger(__name__)


class InvoiceSeriesService:
    """
    Service per la gestione delle serie di numerazione.
    """

    async def get_all(self, db: AsyncSession, tenant_id: int) -> List[InvoiceSeries]:
        """Recupera le serie del tenant, la predefinita per prima."""
        query = (
            select(InvoiceSeries)
            .where(InvoiceSeries.tenant_id == tenant_id)
            .order_by(InvoiceSeries.is_default.desc(), InvoiceSeries.series.asc())
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_by_id(self, db: AsyncSession, tenant_id: int, series_id: int) -> InvoiceSeries:
        """Recupera una serie del tenant."""
        query = select(InvoiceSeries).where(
            InvoiceSeries.id == series_id,
            InvoiceSeries.tenant_id == tenant_id,
        )
        result = await db.execute(query)
        series = result.scalar_one_or_none()

        if not series:
            raise NotFoundError(f"Serie {series_id} non trovata")

        return series

    async def _find_by_name(
        self,
        db: AsyncSession,
        tenant_id: int,
        name: str,
        database_id: Optional[int] = None,
    ) -> Optional[InvoiceSeries]:
        """Serie per nome: prima quella del database, poi quella valida per tutti."""
        query = (
            select(InvoiceSeries)
            .where(
                InvoiceSeries.tenant_id == tenant_id,
                InvoiceSeries.series == name.upper(),
                or_(
                    InvoiceSeries.database_id == database_id,
                    InvoiceSeries.database_id.is_(None),
                ),
            )
            .order_by(InvoiceSeries.database_id.is_(None).asc())
            .limit(1)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def _clear_default(self, db: AsyncSession, tenant_id: int, keep_id: Optional[int] = None) -> None:
        stmt = update(InvoiceSeries).where(
            InvoiceSeries.tenant_id == tenant_id,
            InvoiceSeries.is_default == True,
        )
        if keep_id is not None:
            stmt = stmt.where(InvoiceSeries.id != keep_id)
        await db.execute(stmt.values(is_default=False).execution_options(synchronize_session="fetch"))

    async def create(self, db: AsyncSession, tenant_id: int, data: InvoiceSeriesCreate) -> InvoiceSeries:
        """
        Crea una nuova serie.

        Raises:
            NotFoundError: Tenant o database inesistente
            DuplicateError: Nome serie già usato dal tenant
        """
        await invoice_system_service.resolve_database(db, tenant_id, data.database_id)

        existing = await self._find_by_name(db, tenant_id, data.series, data.database_id)
        if existing is not None and existing.database_id == data.database_id:
            logger.warning("Serie duplicata per il tenant %s: %s", tenant_id, data.series)
            raise DuplicateError(f"La serie '{data.series}' esiste già")

        if data.is_default:
            await self._clear_default(db, tenant_id)

        series = InvoiceSeries(tenant_id=tenant_id, **data.model_dump())
        db.add(series)
        await db.flush()
        await db.refresh(series)
        logger.info("Creata serie %s per il tenant %s", series.series, tenant_id)
        return series

    async def update(
        self,
        db: AsyncSession,
        tenant_id: int,
        series_id: int,
        data: InvoiceSeriesUpdate,
    ) -> InvoiceSeries:
        """Aggiorna una serie. Il nome deve restare univoco nel tenant."""
        series = await self.get_by_id(db, tenant_id, series_id)
        update_data = data.model_dump(exclude_unset=True)

        new_name = update_data.get("series")
        if new_name and new_name != series.series:
            existing = await self._find_by_name(db, tenant_id, new_name, series.database_id)
            if existing is not None and existing.id != series.id and existing.database_id == series.database_id:
                raise DuplicateError(f"La serie '{new_name}' esiste già")

        if update_data.get("is_default"):
            await self._clear_default(db, tenant_id, keep_id=series.id)

        for k, v in update_data.items():
            setattr(series, k, v)

        await db.flush()
        await db.refresh(series)
        return series

    async def delete(self, db: AsyncSession, tenant_id: int, series_id: int) -> None:
        """Elimina una serie. Le fatture già emesse conservano il loro numero."""
        series = await self.get_by_id(db, tenant_id, series_id)
        await db.delete(series)
        await db.flush()

    async def resolve_config(
        self,
        db: AsyncSession,
        tenant: Tenant,
        database_id: int,
        series_name: Optional[str] = None,
    ) -> NumberingConfig:
        """
        Configurazione di numerazione per una nuova fattura.

        Ordine di risoluzione:
        1. serie richiesta, se configurata
        2. serie predefinita del tenant (se nessuna serie è richiesta)
        3. default del tenant, completati dalle impostazioni globali;
           una serie richiesta ma non configurata usa questi default
           con il proprio nome
        """
        configured: Optional[InvoiceSeries] = None
        if series_name:
            configured = await self._find_by_name(db, tenant.id, series_name, database_id)
        else:
            result = await db.execute(
                select(InvoiceSeries)
                .where(
                    InvoiceSeries.tenant_id == tenant.id,
                    InvoiceSeries.is_default == True,
                    or_(
                        InvoiceSeries.database_id == database_id,
                        InvoiceSeries.database_id.is_(None),
                    ),
                )
                .limit(1)
            )
            configured = result.scalar_one_or_none()

        if configured is not None:
            return NumberingConfig(
                series=configured.series,
                prefix=configured.prefix,
                suffix=configured.suffix,
                separator=configured.separator or settings.invoice_number_separator,
                include_year=configured.include_year,
                include_month=configured.include_month,
                start_number=configured.start_number,
                padding=settings.invoice_number_padding,
            )

        config = invoice_system_service.default_numbering_config(tenant)
        if series_name:
            config.series = series_name.upper()
        return config


invoice_series_service = InvoiceSeriesService()
