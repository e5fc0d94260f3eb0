"""
Service Layer per la Fatturazione
Progetto: Tabula (Database no-code e Fatturazione)

Definisce la logica di business per la creazione e la consultazione
delle fatture. Le fatture sono righe della tabella protetta "invoices",
le righe fattura della tabella "invoice_items"; i clienti e i prodotti
sono righe di tabelle dell'utente, individuate per tipo semantico.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import ConfigurationError, ConflictError, NotFoundError
from app.core.semantic_types import (
    ColumnMap,
    SemanticColumnType as S,
    extract_customer_details,
    extract_product_details,
    reference_ids,
    to_text,
)
from app.models import Cell, Row, Table
from app.schemas.invoice import (
    MAX_AMOUNT,
    CalculationConfig,
    CalculationItem,
    InvoiceCreate,
    InvoiceCreationResponse,
    InvoiceDetail,
    InvoiceList,
    InvoiceListItem,
    InvoiceProductInput,
    InvoiceRowRead,
    InvoiceStatusUpdate,
)
from app.services.invoice_calculation_service import (
    invoice_calculation_service,
    quantize_money,
)
from app.services.invoice_series_service import invoice_series_service
from app.services.invoice_system_service import (
    InvoiceTables,
    invoice_system_service,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)


def money(value: Decimal) -> str:
    """Importo come stringa a 2 decimali, il formato salvato nelle celle."""
    return str(quantize_money(value))


def number(value: Decimal) -> str:
    """Valore numerico come stringa senza zeri finali superflui."""
    return format(value.normalize(), "f")


class InvoiceService:
    """
    Service per la gestione delle operazioni sulle fatture.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.

    Implementa:
    - Creazione fattura transazionale (fattura + righe + totali)
    - Arricchimento best-effort da cliente e prodotti
    - Lista fatture con dati cliente e statistiche di numerazione
    - Dettaglio fattura con righe
    - Cambio di stato ed eliminazione (fattura + righe)
    """

    # ------------------------------------------------------------
    # Lookup best-effort
    # ------------------------------------------------------------

    async def _lookup_customer(
        self,
        db: AsyncSession,
        tables: InvoiceTables,
        customer_id: int,
    ) -> Optional[dict[str, Any]]:
        """Dettagli del cliente, None se la riga non esiste."""
        if tables.customers is None:
            return None
        row = await db.get(Row, customer_id)
        if row is None or row.table_id != tables.customers.id:
            return None
        values = await invoice_system_service.load_row_values(db, [row.id])
        return extract_customer_details(tables.customer_columns, values[row.id])

    async def _lookup_product(
        self,
        db: AsyncSession,
        database_id: int,
        product: InvoiceProductInput,
    ) -> Optional[dict[str, Any]]:
        """
        Dettagli del prodotto referenziato, None se tabella o riga non esistono.

        La tabella è indicata per nome oppure per id numerico e deve
        appartenere allo stesso database della fattura.
        """
        conditions = [Table.name == product.product_ref_table]
        if product.product_ref_table.isdigit():
            conditions.append(Table.id == int(product.product_ref_table))

        result = await db.execute(
            select(Table)
            .where(Table.database_id == database_id, or_(*conditions))
            .options(selectinload(Table.columns))
            .order_by(Table.id.asc())
            .limit(1)
        )
        table = result.scalar_one_or_none()
        if table is None:
            return None

        row = await db.get(Row, product.product_ref_id)
        if row is None or row.table_id != table.id:
            return None

        values = await invoice_system_service.load_row_values(db, [row.id])
        return extract_product_details(ColumnMap.from_columns(table.columns), values[row.id])

    async def _best_effort(
        self,
        db: AsyncSession,
        description: str,
        lookup: Callable[..., Awaitable[Optional[dict[str, Any]]]],
        *args: Any,
    ) -> Optional[dict[str, Any]]:
        """
        Esegue un lookup in un savepoint: un errore SQL viene loggato e
        non compromette la transazione della fattura.
        """
        try:
            async with db.begin_nested():
                return await lookup(db, *args)
        except SQLAlchemyError as e:
            logger.warning("Lookup %s fallito, uso i valori forniti: %s", description, e)
            return None

    # ------------------------------------------------------------
    # Creazione
    # ------------------------------------------------------------

    async def create_invoice(
        self,
        db: AsyncSession,
        tenant_id: int,
        data: InvoiceCreate,
        database_id: Optional[int] = None,
    ) -> InvoiceCreationResponse:
        """
        Crea una fattura con le sue righe in un'unica transazione.

        Steps:
        1. Risolve tenant e database (404 se assenti)
        2. Garantisce l'esistenza delle tabelle di fatturazione
        3. Assegna il numero fattura della serie
        4. Legge il cliente (best-effort) per lo snapshot anagrafico
        5. Crea la riga fattura con totali provvisori a 0
        6. Per ogni prodotto: legge il prodotto (best-effort) e crea la riga
           fattura; prezzo, IVA e valuta hanno precedenza:
           valore fornito → valore del prodotto (se nei limiti) → default (0, 0, valuta di base)
        7. Calcola i totali e li scrive su fattura e righe
        8. Commit; qualsiasi errore annulla tutto

        Args:
            db: Sessione database
            tenant_id: Id del tenant
            data: Dati validati della fattura
            database_id: Database logico (default: predefinito del tenant)

        Returns:
            InvoiceCreationResponse: Riepilogo con numero e totali

        Raises:
            NotFoundError: Tenant o database inesistente
            ConfigurationError: Tabelle di fatturazione non utilizzabili
            ConflictError: Numero fattura in conflitto con una richiesta concorrente
        """
        try:
            response = await self._create_invoice(db, tenant_id, data, database_id)
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore di integrità durante la creazione della fattura: %s", e)
            raise ConflictError("Errore durante la creazione della fattura")
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Creata fattura %s (id %s) per il tenant %s: %s righe, totale %s %s",
            response.invoice_number, response.id, tenant_id,
            response.items_count, response.grand_total, response.base_currency,
        )
        return response

    async def _create_invoice(
        self,
        db: AsyncSession,
        tenant_id: int,
        data: InvoiceCreate,
        database_id: Optional[int],
    ) -> InvoiceCreationResponse:
        tenant, database = await invoice_system_service.resolve_database(db, tenant_id, database_id)
        tables = await invoice_system_service.ensure_invoice_tables(db, database.id)

        invoice_date = data.invoice_date or date.today()
        base_currency = data.base_currency
        warnings: list[str] = []

        config = await invoice_series_service.resolve_config(db, tenant, database.id, data.invoice_series)
        invoice_number = await invoice_system_service.generate_invoice_number(
            db, tenant.id, database.id, tables, config, invoice_date
        )

        customer = await self._best_effort(
            db, f"cliente {data.customer_id}",
            self._lookup_customer, tables, data.customer_id,
        )
        if customer is None:
            logger.warning("Cliente %s non trovato, fattura senza dati anagrafici", data.customer_id)
            warnings.append(f"Cliente {data.customer_id} non trovato")
            customer = {}

        invoice_values = {
            S.INVOICE_NUMBER: invoice_number,
            S.INVOICE_SERIES: config.series,
            S.INVOICE_DATE: invoice_date.isoformat(),
            S.INVOICE_DUE_DATE: data.due_date.isoformat(),
            S.INVOICE_CUSTOMER_ID: [data.customer_id],
            S.INVOICE_STATUS: data.status.value,
            S.INVOICE_PAYMENT_TERMS: data.payment_terms,
            S.INVOICE_PAYMENT_METHOD: data.payment_method,
            S.INVOICE_NOTES: data.notes,
            S.INVOICE_BASE_CURRENCY: base_currency,
            S.INVOICE_LATE_FEE: money(data.late_fee),
            S.INVOICE_DISCOUNT_AMOUNT: money(data.discount_amount),
            S.INVOICE_SUBTOTAL: money(Decimal("0")),
            S.INVOICE_TAX_TOTAL: money(Decimal("0")),
            S.INVOICE_TOTAL_AMOUNT: money(Decimal("0")),
            S.CUSTOMER_NAME: customer.get("name"),
            S.CUSTOMER_TAX_ID: customer.get("tax_id"),
            S.CUSTOMER_ADDRESS: customer.get("full_address"),
        }
        invoice_row = await invoice_system_service.create_row(
            db,
            tables.invoices,
            tables.invoice_columns,
            invoice_values,
            extra_values=self._additional_values(tables.invoice_columns, data.additional_data),
        )

        item_rows: list[Row] = []
        calculation_items: list[CalculationItem] = []
        for product in data.products:
            label = f"{product.product_ref_table}/{product.product_ref_id}"
            details = await self._best_effort(
                db, f"prodotto {label}",
                self._lookup_product, database.id, product,
            )
            if details is None:
                logger.warning("Prodotto %s non trovato, uso i valori forniti", label)
                warnings.append(f"Prodotto {label} non trovato")
                details = {}

            price = product.price
            if price is None:
                price = self._product_value(details, "price", MAX_AMOUNT, label, warnings)
            vat_rate = product.vat_rate
            if vat_rate is None:
                vat_rate = self._product_value(details, "vat", Decimal("100"), label, warnings)
            currency = product.currency or details.get("currency") or base_currency

            item_values = {
                S.INVOICE_ID: [invoice_row.id],
                S.REFERENCE: product.product_ref_table,
                S.ID: product.product_ref_id,
                S.QUANTITY: number(product.quantity),
                S.UNIT_OF_MEASURE: product.unit_of_measure or details.get("unit_of_measure"),
                S.UNIT_PRICE: money(price),
                S.CURRENCY: currency,
                S.PRODUCT_NAME: details.get("name"),
                S.PRODUCT_DESCRIPTION: details.get("description"),
                S.PRODUCT_CATEGORY: details.get("category"),
                S.PRODUCT_SKU: details.get("sku"),
                S.PRODUCT_VAT: number(vat_rate),
                S.DESCRIPTION: product.description or details.get("description") or details.get("name"),
            }
            item_rows.append(
                await invoice_system_service.create_row(db, tables.items, tables.item_columns, item_values)
            )
            calculation_items.append(
                CalculationItem(
                    quantity=product.quantity,
                    unit_price=price,
                    vat_rate=vat_rate,
                    currency=currency,
                )
            )

        totals = invoice_calculation_service.calculate_invoice_totals(
            calculation_items,
            CalculationConfig(
                base_currency=base_currency,
                exchange_rates={**settings.exchange_rates, **data.exchange_rates},
                discount_amount=data.discount_amount,
                late_fee=data.late_fee,
            ),
        )

        await invoice_system_service.set_cells(
            db,
            invoice_row.id,
            tables.invoice_columns,
            {
                S.INVOICE_SUBTOTAL: money(totals.subtotal),
                S.INVOICE_TAX_TOTAL: money(totals.vat_total),
                S.INVOICE_TOTAL_AMOUNT: money(totals.grand_total),
            },
        )
        for item_row, line in zip(item_rows, totals.lines):
            await invoice_system_service.set_cells(
                db,
                item_row.id,
                tables.item_columns,
                {
                    S.TOTAL_PRICE: money(line.line_total),
                    S.TAX_AMOUNT: money(line.tax_amount),
                },
            )

        return InvoiceCreationResponse(
            id=invoice_row.id,
            invoice_number=invoice_number,
            invoice_series=config.series,
            invoice_date=invoice_date,
            due_date=data.due_date,
            status=data.status,
            customer_id=data.customer_id,
            customer_name=customer.get("name"),
            item_ids=[row.id for row in item_rows],
            base_currency=base_currency,
            subtotal=totals.subtotal,
            vat_total=totals.vat_total,
            discount_amount=totals.discount_amount,
            late_fee=totals.late_fee,
            grand_total=totals.grand_total,
            totals_by_currency=totals.totals_by_currency,
            vat_breakdown=totals.vat_breakdown,
            warnings=warnings,
        )

    @staticmethod
    def _product_value(
        details: dict[str, Any],
        field: str,
        upper: Decimal,
        label: str,
        warnings: list[str],
    ) -> Decimal:
        """Valore numerico del prodotto se in [0, upper], altrimenti 0 con un avviso."""
        value = details.get(field)
        if value is None:
            return Decimal("0")
        if Decimal("0") <= value <= upper:
            return value
        logger.warning("Prodotto %s: %s %s fuori intervallo, uso 0", label, field, value)
        warnings.append(f"Prodotto {label}: {field} {value} fuori intervallo, uso il valore predefinito")
        return Decimal("0")

    @staticmethod
    def _additional_values(column_map: ColumnMap, additional_data: dict[str, Any]) -> dict:
        """Valori per colonne personalizzate: solo colonne esistenti e non bloccate."""
        values = {}
        for name, value in additional_data.items():
            column = column_map.by_name.get(name)
            if column is None or column.is_locked:
                logger.warning("Campo aggiuntivo ignorato: %s", name)
                continue
            values[column] = value
        return values

    # ------------------------------------------------------------
    # Consultazione
    # ------------------------------------------------------------

    @staticmethod
    def _row_data(column_map: ColumnMap, values: dict[int, Any]) -> dict[str, Any]:
        """Valori della riga indicizzati per nome colonna."""
        return {
            column.name: values.get(column.id)
            for column in column_map.columns
            if column.id in values
        }

    async def get_all(
        self,
        db: AsyncSession,
        tenant_id: int,
        database_id: Optional[int] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> InvoiceList:
        """
        Recupera la lista paginata delle fatture (più recenti prima).

        Ogni fattura è arricchita con nome, email e indirizzo del cliente
        letti dalla tabella clienti; la risposta include le statistiche
        di numerazione.
        """
        tenant, database = await invoice_system_service.resolve_database(db, tenant_id, database_id)
        tables = await invoice_system_service.get_invoice_tables(db, database.id)
        config = await invoice_series_service.resolve_config(db, tenant, database.id)
        stats = await invoice_system_service.get_numbering_stats(
            db, tenant.id, database.id, tables, config
        )

        if tables.invoices is None:
            return InvoiceList(invoices=[], total=0, page=page, per_page=per_page, stats=stats)

        count_result = await db.execute(
            select(func.count()).select_from(Row).where(Row.table_id == tables.invoices.id)
        )
        total = count_result.scalar() or 0

        result = await db.execute(
            select(Row)
            .where(Row.table_id == tables.invoices.id)
            .order_by(Row.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        rows = list(result.scalars().all())
        values = await invoice_system_service.load_row_values(db, [row.id for row in rows])

        customer_ref = tables.invoice_columns.get(S.INVOICE_CUSTOMER_ID)
        number_col = tables.invoice_columns.get(S.INVOICE_NUMBER)
        customer_ids = {
            customer_id
            for row in rows
            for customer_id in reference_ids(values[row.id].get(customer_ref.id) if customer_ref else None)
        }
        customers = await self._load_customers(db, tables, customer_ids)

        invoices = []
        for row in rows:
            row_values = values[row.id]
            refs = reference_ids(row_values.get(customer_ref.id)) if customer_ref else []
            customer = customers.get(refs[0]) if refs else None
            invoices.append(
                InvoiceListItem(
                    id=row.id,
                    created_at=row.created_at,
                    data=self._row_data(tables.invoice_columns, row_values),
                    invoice_number=to_text(row_values.get(number_col.id)) if number_col else None,
                    customer_name=customer.get("name") if customer else None,
                    customer_email=customer.get("email") if customer else None,
                    customer_address=customer.get("full_address") if customer else None,
                )
            )

        logger.info(
            "Recuperate %s fatture su %s totali (tenant %s, pagina %s)",
            len(invoices), total, tenant_id, page,
        )
        return InvoiceList(invoices=invoices, total=total, page=page, per_page=per_page, stats=stats)

    async def _load_customers(
        self,
        db: AsyncSession,
        tables: InvoiceTables,
        customer_ids: set[int],
    ) -> dict[int, dict[str, Any]]:
        if tables.customers is None or not customer_ids:
            return {}
        result = await db.execute(
            select(Row.id).where(Row.table_id == tables.customers.id, Row.id.in_(customer_ids))
        )
        ids = list(result.scalars().all())
        values = await invoice_system_service.load_row_values(db, ids)
        return {
            row_id: extract_customer_details(tables.customer_columns, row_values)
            for row_id, row_values in values.items()
        }

    async def _get_invoice_row(
        self,
        db: AsyncSession,
        tenant_id: int,
        invoice_id: int,
        database_id: Optional[int],
    ) -> tuple[InvoiceTables, Row]:
        """Tabelle di fatturazione e riga fattura; 404 se la riga non è una fattura."""
        _, database = await invoice_system_service.resolve_database(db, tenant_id, database_id)
        tables = await invoice_system_service.get_invoice_tables(db, database.id)

        row = await db.get(Row, invoice_id)
        if tables.invoices is None or row is None or row.table_id != tables.invoices.id:
            logger.warning("Fattura non trovata: %s (tenant %s)", invoice_id, tenant_id)
            raise NotFoundError(f"Fattura con ID {invoice_id} non trovata")
        return tables, row

    async def _item_ids(self, db: AsyncSession, tables: InvoiceTables, invoice_id: int) -> list[int]:
        """Id delle righe fattura che referenziano la fattura."""
        invoice_ref = tables.item_columns.get(S.INVOICE_ID)
        if tables.items is None or invoice_ref is None:
            return []
        item_refs = await invoice_system_service.load_column_values(db, invoice_ref)
        return sorted(
            item_id for item_id, value in item_refs.items() if invoice_id in reference_ids(value)
        )

    async def get_by_id(
        self,
        db: AsyncSession,
        tenant_id: int,
        invoice_id: int,
        database_id: Optional[int] = None,
    ) -> InvoiceDetail:
        """
        Recupera una fattura con righe e cliente.

        Raises:
            NotFoundError: Fattura inesistente o di un altro tenant
        """
        tables, row = await self._get_invoice_row(db, tenant_id, invoice_id, database_id)

        values = (await invoice_system_service.load_row_values(db, [row.id]))[row.id]
        number_col = tables.invoice_columns.get(S.INVOICE_NUMBER)
        customer_ref = tables.invoice_columns.get(S.INVOICE_CUSTOMER_ID)

        customer = None
        refs = reference_ids(values.get(customer_ref.id)) if customer_ref else []
        if refs:
            customer = (await self._load_customers(db, tables, {refs[0]})).get(refs[0])

        item_ids = await self._item_ids(db, tables, row.id)
        item_values = await invoice_system_service.load_row_values(db, item_ids)
        items = [
            InvoiceRowRead(id=item_id, data=self._row_data(tables.item_columns, item_values[item_id]))
            for item_id in item_ids
        ]

        return InvoiceDetail(
            id=row.id,
            created_at=row.created_at,
            data=self._row_data(tables.invoice_columns, values),
            invoice_number=to_text(values.get(number_col.id)) if number_col else None,
            customer=customer,
            items=items,
        )

    # ------------------------------------------------------------
    # Modifica ed eliminazione
    # ------------------------------------------------------------

    async def update_status(
        self,
        db: AsyncSession,
        tenant_id: int,
        invoice_id: int,
        data: InvoiceStatusUpdate,
        database_id: Optional[int] = None,
    ) -> InvoiceDetail:
        """
        Aggiorna lo stato di una fattura.

        Solo lo stato è modificabile: numero, importi e righe restano
        quelli calcolati alla creazione.

        Raises:
            NotFoundError: Fattura inesistente
            ConfigurationError: Tabella fatture senza colonna di stato
        """
        tables, row = await self._get_invoice_row(db, tenant_id, invoice_id, database_id)
        if tables.invoice_columns.get(S.INVOICE_STATUS) is None:
            raise ConfigurationError(
                "La tabella fatture non ha una colonna di stato",
                extra={"missing_columns": [S.INVOICE_STATUS.value]},
            )

        try:
            await invoice_system_service.set_cells(
                db, row.id, tables.invoice_columns, {S.INVOICE_STATUS: data.status.value}
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Fattura %s: stato aggiornato a %s", invoice_id, data.status.value)
        return await self.get_by_id(db, tenant_id, invoice_id, database_id)

    async def delete_invoice(
        self,
        db: AsyncSession,
        tenant_id: int,
        invoice_id: int,
        database_id: Optional[int] = None,
    ) -> None:
        """
        Elimina una fattura e le sue righe in un'unica transazione.

        Le righe fattura sono individuate tramite la colonna di riferimento
        alla fattura; le celle vengono eliminate esplicitamente.

        Raises:
            NotFoundError: Fattura inesistente
        """
        tables, row = await self._get_invoice_row(db, tenant_id, invoice_id, database_id)
        item_ids = await self._item_ids(db, tables, row.id)
        row_ids = [row.id, *item_ids]

        try:
            await db.execute(delete(Cell).where(Cell.row_id.in_(row_ids)))
            await db.execute(delete(Row).where(Row.id.in_(row_ids)))
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Eliminata fattura %s (tenant %s) con %s righe",
            invoice_id, tenant_id, len(item_ids),
        )


invoice_service = InvoiceService()
