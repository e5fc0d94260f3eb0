"""
Service Layer per il Sistema di Fatturazione
Progetto: Tabula (Database no-code e Fatturazione)

Gestisce l'infrastruttura su cui poggia la fatturazione:
- Risoluzione tenant / database logico
- Creazione lazy delle tabelle protette customers, invoices, invoice_items
  con le colonne predefinite (individuate per tipo semantico)
- Aggiornamento di schemi creati da versioni precedenti
- Lettura/scrittura di righe e celle delle tabelle dinamiche
- Numerazione progressiva delle fatture per serie
- Statistiche di numerazione
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import ConfigurationError, ConflictError, NotFoundError
from app.core.semantic_types import (
    ColumnMap,
    SemanticColumnType as S,
    to_decimal,
    to_text,
)
from app.models import Cell, Column, Database, InvoiceNumberSequence, Row, Table, Tenant
from app.schemas.invoice import NumberingStats

# Logger per questo modulo
logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Definizione tabelle protette
# ------------------------------------------------------------

CUSTOMERS = "customers"
INVOICES = "invoices"
INVOICE_ITEMS = "invoice_items"

PROTECTED_TABLE_TYPES = (CUSTOMERS, INVOICES, INVOICE_ITEMS)

TABLE_DESCRIPTIONS = {
    CUSTOMERS: "Anagrafica clienti per la fatturazione",
    INVOICES: "Fatture emesse",
    INVOICE_ITEMS: "Righe delle fatture",
}

# (nome, tipo, tipo semantico, obbligatoria, tabella referenziata)
PREDEFINED_COLUMNS: dict[str, list[tuple[str, str, S, bool, Optional[str]]]] = {
    CUSTOMERS: [
        ("customer_name", "string", S.CUSTOMER_NAME, True, None),
        ("customer_email", "string", S.CUSTOMER_EMAIL, False, None),
        ("customer_tax_id", "string", S.CUSTOMER_TAX_ID, False, None),
        ("customer_registration_number", "string", S.CUSTOMER_REGISTRATION_NUMBER, False, None),
        ("customer_street", "string", S.CUSTOMER_STREET, False, None),
        ("customer_street_number", "string", S.CUSTOMER_STREET_NUMBER, False, None),
        ("customer_address", "string", S.CUSTOMER_ADDRESS, False, None),
        ("customer_city", "string", S.CUSTOMER_CITY, False, None),
        ("customer_country", "string", S.CUSTOMER_COUNTRY, False, None),
        ("customer_postal_code", "string", S.CUSTOMER_POSTAL_CODE, False, None),
        ("customer_phone", "string", S.CUSTOMER_PHONE, False, None),
    ],
    INVOICES: [
        ("invoice_number", "string", S.INVOICE_NUMBER, True, None),
        ("invoice_series", "string", S.INVOICE_SERIES, False, None),
        ("date", "date", S.INVOICE_DATE, True, None),
        ("due_date", "date", S.INVOICE_DUE_DATE, True, None),
        ("customer_id", "reference", S.INVOICE_CUSTOMER_ID, True, CUSTOMERS),
        ("status", "string", S.INVOICE_STATUS, False, None),
        ("payment_terms", "string", S.INVOICE_PAYMENT_TERMS, False, None),
        ("payment_method", "string", S.INVOICE_PAYMENT_METHOD, False, None),
        ("late_fee", "number", S.INVOICE_LATE_FEE, False, None),
        ("notes", "string", S.INVOICE_NOTES, False, None),
        ("base_currency", "string", S.INVOICE_BASE_CURRENCY, False, None),
        ("subtotal", "number", S.INVOICE_SUBTOTAL, False, None),
        ("vat_total", "number", S.INVOICE_TAX_TOTAL, False, None),
        ("discount_amount", "number", S.INVOICE_DISCOUNT_AMOUNT, False, None),
        ("total_amount", "number", S.INVOICE_TOTAL_AMOUNT, False, None),
        ("customer_name", "string", S.CUSTOMER_NAME, False, None),
        ("customer_tax_id", "string", S.CUSTOMER_TAX_ID, False, None),
        ("customer_address", "string", S.CUSTOMER_ADDRESS, False, None),
    ],
    INVOICE_ITEMS: [
        ("invoice_id", "reference", S.INVOICE_ID, True, INVOICES),
        ("product_ref_table", "string", S.REFERENCE, True, None),
        ("product_ref_id", "number", S.ID, True, None),
        ("quantity", "number", S.QUANTITY, True, None),
        ("unit_of_measure", "string", S.UNIT_OF_MEASURE, False, None),
        ("price", "number", S.UNIT_PRICE, True, None),
        ("currency", "string", S.CURRENCY, True, None),
        ("product_name", "string", S.PRODUCT_NAME, False, None),
        ("product_description", "string", S.PRODUCT_DESCRIPTION, False, None),
        ("product_category", "string", S.PRODUCT_CATEGORY, False, None),
        ("product_sku", "string", S.PRODUCT_SKU, False, None),
        ("product_vat", "number", S.PRODUCT_VAT, True, None),
        ("description", "string", S.DESCRIPTION, False, None),
        ("total_price", "number", S.TOTAL_PRICE, False, None),
        ("tax_amount", "number", S.TAX_AMOUNT, False, None),
    ],
}

REQUIRED_SEMANTICS: dict[str, tuple[S, ...]] = {
    CUSTOMERS: (),
    INVOICES: (
        S.INVOICE_NUMBER,
        S.INVOICE_DATE,
        S.INVOICE_DUE_DATE,
        S.INVOICE_CUSTOMER_ID,
    ),
    INVOICE_ITEMS: (
        S.INVOICE_ID,
        S.REFERENCE,
        S.ID,
        S.QUANTITY,
        S.UNIT_PRICE,
        S.PRODUCT_VAT,
        S.CURRENCY,
    ),
}


@dataclass
class InvoiceTables:
    """Tabelle protette di un database con le rispettive mappe colonne."""

    customers: Optional[Table] = None
    invoices: Optional[Table] = None
    items: Optional[Table] = None
    customer_columns: ColumnMap = field(default_factory=ColumnMap)
    invoice_columns: ColumnMap = field(default_factory=ColumnMap)
    item_columns: ColumnMap = field(default_factory=ColumnMap)

    def by_type(self, protected_type: str) -> Optional[Table]:
        return {
            CUSTOMERS: self.customers,
            INVOICES: self.invoices,
            INVOICE_ITEMS: self.items,
        }[protected_type]

    def columns_for(self, protected_type: str) -> ColumnMap:
        return {
            CUSTOMERS: self.customer_columns,
            INVOICES: self.invoice_columns,
            INVOICE_ITEMS: self.item_columns,
        }[protected_type]

    @property
    def missing(self) -> list[str]:
        return [t for t in PROTECTED_TABLE_TYPES if self.by_type(t) is None]


# ------------------------------------------------------------
# Numerazione
# ------------------------------------------------------------

@dataclass
class NumberingConfig:
    """Parametri di una serie di numerazione."""

    series: str
    prefix: Optional[str] = None
    suffix: Optional[str] = None
    separator: str = "-"
    include_year: bool = True
    include_month: bool = False
    start_number: int = 1
    padding: int = 4


def build_series_identifier(config: NumberingConfig, issue_date: date) -> str:
    """
    Identificativo della serie per una data: SERIE[-YYYY][-MM].

    È anche la chiave del contatore, quindi il progressivo riparte
    ad ogni anno (o mese) quando la serie li include.
    """
    parts = [config.series]
    if config.include_year:
        parts.append(f"{issue_date.year:04d}")
    if config.include_month:
        parts.append(f"{issue_date.month:02d}")
    return config.separator.join(parts)


def format_invoice_number(config: NumberingConfig, issue_date: date, number: int) -> str:
    """Numero completo, es. INV-2024-0001."""
    parts = []
    if config.prefix:
        parts.append(config.prefix)
    parts.append(build_series_identifier(config, issue_date))
    parts.append(f"{number:0{config.padding}d}")
    if config.suffix:
        parts.append(config.suffix)
    return config.separator.join(parts)


def parse_invoice_counter(config: NumberingConfig, identifier: str, invoice_number: Any) -> Optional[int]:
    """Progressivo contenuto in un numero fattura della serie, None se non appartiene."""
    text = to_text(invoice_number)
    if not text:
        return None
    sep = re.escape(config.separator)
    pattern = ""
    if config.prefix:
        pattern += re.escape(config.prefix) + sep
    pattern += re.escape(identifier) + sep + r"(\d+)"
    if config.suffix:
        pattern += sep + re.escape(config.suffix)
    match = re.fullmatch(pattern, text)
    return int(match.group(1)) if match else None


def parse_cell_date(value: Any) -> Optional[date]:
    """Data ISO (YYYY-MM-DD, eventualmente con orario) da una cella."""
    text = to_text(value)
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


class InvoiceSystemService:
    """
    Service per l'infrastruttura della fatturazione.

    Tutti i metodi lavorano nella transazione del chiamante: eseguono
    flush ma mai commit.
    """

    # ------------------------------------------------------------
    # Tenant e database
    # ------------------------------------------------------------

    async def resolve_database(
        self,
        db: AsyncSession,
        tenant_id: int,
        database_id: Optional[int] = None,
    ) -> tuple[Tenant, Database]:
        """
        Recupera il tenant e il suo database logico.

        Senza database_id usa il database predefinito (o il primo creato).

        Raises:
            NotFoundError: Tenant inesistente o senza database
        """
        tenant = await db.get(Tenant, tenant_id)
        if tenant is None:
            logger.warning("Tenant non trovato: %s", tenant_id)
            raise NotFoundError(f"Tenant {tenant_id} non trovato")

        query = select(Database).where(Database.tenant_id == tenant_id)
        if database_id is not None:
            query = query.where(Database.id == database_id)
        query = query.order_by(Database.is_default.desc(), Database.id.asc()).limit(1)

        result = await db.execute(query)
        database = result.scalar_one_or_none()
        if database is None:
            if database_id is not None:
                raise NotFoundError(f"Database {database_id} non trovato per il tenant {tenant_id}")
            raise NotFoundError(
                f"Nessun database configurato per il tenant {tenant_id}",
                error_code="DATABASE_NOT_FOUND",
            )
        return tenant, database

    # ------------------------------------------------------------
    # Tabelle protette
    # ------------------------------------------------------------

    async def get_invoice_tables(self, db: AsyncSession, database_id: int) -> InvoiceTables:
        """Carica le tabelle protette del database (quelle assenti restano None)."""
        result = await db.execute(
            select(Table)
            .where(
                Table.database_id == database_id,
                Table.protected_type.in_(PROTECTED_TABLE_TYPES),
            )
            .options(selectinload(Table.columns))
            .order_by(Table.id.asc())
            .execution_options(populate_existing=True)
        )
        tables = InvoiceTables()
        for table in result.scalars().all():
            if table.protected_type == CUSTOMERS and tables.customers is None:
                tables.customers = table
                tables.customer_columns = ColumnMap.from_columns(table.columns)
            elif table.protected_type == INVOICES and tables.invoices is None:
                tables.invoices = table
                tables.invoice_columns = ColumnMap.from_columns(table.columns)
            elif table.protected_type == INVOICE_ITEMS and tables.items is None:
                tables.items = table
                tables.item_columns = ColumnMap.from_columns(table.columns)
        return tables

    async def initialize_invoice_tables(
        self,
        db: AsyncSession,
        database_id: int,
        tables: Optional[InvoiceTables] = None,
    ) -> list[str]:
        """
        Crea le tabelle protette mancanti con le colonne predefinite.

        Returns:
            Tipi delle tabelle create
        """
        if tables is None:
            tables = await self.get_invoice_tables(db, database_id)

        table_ids = {
            t: tables.by_type(t).id for t in PROTECTED_TABLE_TYPES if tables.by_type(t) is not None
        }
        created = []

        # customers → invoices → invoice_items: le referenze puntano a tabelle già create
        for protected_type in PROTECTED_TABLE_TYPES:
            if protected_type in table_ids:
                continue

            table = Table(
                database_id=database_id,
                name=protected_type,
                description=TABLE_DESCRIPTIONS[protected_type],
                is_protected=True,
                protected_type=protected_type,
            )
            db.add(table)
            await db.flush()
            table_ids[protected_type] = table.id

            for order, (name, col_type, semantic, required, reference) in enumerate(
                PREDEFINED_COLUMNS[protected_type]
            ):
                db.add(
                    Column(
                        table_id=table.id,
                        name=name,
                        type=col_type,
                        semantic_type=semantic.value,
                        required=required,
                        order=order,
                        is_locked=True,
                        reference_table_id=table_ids.get(reference) if reference else None,
                    )
                )
            created.append(protected_type)

        if created:
            await db.flush()
            logger.info(
                "Tabelle di fatturazione create nel database %s: %s",
                database_id, ", ".join(created),
            )
        return created

    async def update_invoice_tables_schema(self, db: AsyncSession, tables: InvoiceTables) -> int:
        """
        Aggiunge alle tabelle esistenti le colonne predefinite mancanti.

        Una colonna con lo stesso nome ma senza tipo semantico viene
        etichettata invece di essere duplicata.

        Returns:
            Numero di colonne aggiunte o etichettate
        """
        changes = 0
        for protected_type in PROTECTED_TABLE_TYPES:
            table = tables.by_type(protected_type)
            if table is None:
                continue
            column_map = tables.columns_for(protected_type)
            next_order = max((c.order or 0 for c in column_map.columns), default=-1) + 1

            for name, col_type, semantic, required, reference in PREDEFINED_COLUMNS[protected_type]:
                if semantic in column_map:
                    continue
                existing = column_map.by_name.get(name)
                if existing is not None:
                    if existing.semantic_type:
                        logger.warning(
                            "Colonna %s della tabella %s già usata per %s, impossibile aggiungere %s",
                            name, table.id, existing.semantic_type, semantic.value,
                        )
                        continue
                    existing.semantic_type = semantic.value
                else:
                    reference_table = tables.by_type(reference) if reference else None
                    db.add(
                        Column(
                            table_id=table.id,
                            name=name,
                            type=col_type,
                            semantic_type=semantic.value,
                            required=required,
                            order=next_order,
                            is_locked=True,
                            reference_table_id=reference_table.id if reference_table else None,
                        )
                    )
                    next_order += 1
                changes += 1

        if changes:
            await db.flush()
            logger.info("Schema tabelle di fatturazione aggiornato: %s colonne", changes)
        return changes

    async def ensure_invoice_tables(self, db: AsyncSession, database_id: int) -> InvoiceTables:
        """
        Restituisce le tabelle di fatturazione, creandole o aggiornandole se necessario.

        Raises:
            ConfigurationError: Colonne semantiche obbligatorie assenti
        """
        tables = await self.get_invoice_tables(db, database_id)
        created = await self.initialize_invoice_tables(db, database_id, tables)
        if created:
            tables = await self.get_invoice_tables(db, database_id)
        if await self.update_invoice_tables_schema(db, tables):
            tables = await self.get_invoice_tables(db, database_id)

        for protected_type in (INVOICES, INVOICE_ITEMS):
            missing = tables.columns_for(protected_type).missing(REQUIRED_SEMANTICS[protected_type])
            if missing:
                raise ConfigurationError(
                    f"La tabella {protected_type} non ha le colonne obbligatorie: "
                    + ", ".join(m.value for m in missing),
                    extra={"table": protected_type, "missing_columns": [m.value for m in missing]},
                )
        return tables

    # ------------------------------------------------------------
    # Righe e celle
    # ------------------------------------------------------------

    async def create_row(
        self,
        db: AsyncSession,
        table: Table,
        column_map: ColumnMap,
        values: dict[S, Any],
        extra_values: Optional[dict[Column, Any]] = None,
    ) -> Row:
        """Crea una riga con una cella per ogni valore non None."""
        row = Row(table_id=table.id)
        db.add(row)
        await db.flush()

        for semantic, value in values.items():
            column = column_map.get(semantic)
            if column is None or value is None:
                continue
            db.add(Cell(row_id=row.id, column_id=column.id, value=value))
        for column, value in (extra_values or {}).items():
            if value is not None:
                db.add(Cell(row_id=row.id, column_id=column.id, value=value))

        await db.flush()
        return row

    async def set_cells(
        self,
        db: AsyncSession,
        row_id: int,
        column_map: ColumnMap,
        values: dict[S, Any],
    ) -> None:
        """Aggiorna (o crea) le celle di una riga."""
        columns = {
            column.id: value
            for semantic, value in values.items()
            if (column := column_map.get(semantic)) is not None
        }
        if not columns:
            return
        result = await db.execute(
            select(Cell).where(Cell.row_id == row_id, Cell.column_id.in_(columns.keys()))
        )
        existing = {cell.column_id: cell for cell in result.scalars().all()}
        for column_id, value in columns.items():
            if column_id in existing:
                existing[column_id].value = value
            else:
                db.add(Cell(row_id=row_id, column_id=column_id, value=value))
        await db.flush()

    async def load_row_values(
        self,
        db: AsyncSession,
        row_ids: Iterable[int],
    ) -> dict[int, dict[int, Any]]:
        """Valori delle righe indicate: {row_id: {column_id: valore}}."""
        row_ids = list(row_ids)
        values: dict[int, dict[int, Any]] = {row_id: {} for row_id in row_ids}
        if not row_ids:
            return values
        result = await db.execute(select(Cell).where(Cell.row_id.in_(row_ids)))
        for cell in result.scalars().all():
            values[cell.row_id][cell.column_id] = cell.value
        return values

    async def load_column_values(self, db: AsyncSession, column: Column) -> dict[int, Any]:
        """Valori di una colonna: {row_id: valore}."""
        result = await db.execute(
            select(Cell.row_id, Cell.value).where(Cell.column_id == column.id)
        )
        return {row_id: value for row_id, value in result.all()}

    # ------------------------------------------------------------
    # Numerazione fatture
    # ------------------------------------------------------------

    def default_numbering_config(self, tenant: Optional[Tenant] = None) -> NumberingConfig:
        """Serie di default del tenant, completata dalle impostazioni globali."""
        return NumberingConfig(
            series=(tenant.invoice_series_prefix if tenant else None) or settings.invoice_default_series,
            separator=settings.invoice_number_separator,
            include_year=(
                tenant.invoice_include_year
                if tenant is not None and tenant.invoice_include_year is not None
                else settings.invoice_include_year
            ),
            start_number=(tenant.invoice_start_number if tenant else None) or settings.invoice_start_number,
            padding=settings.invoice_number_padding,
        )

    async def _max_existing_counter(
        self,
        db: AsyncSession,
        tables: InvoiceTables,
        config: NumberingConfig,
        identifier: str,
    ) -> int:
        """Progressivo più alto già presente nella tabella fatture per la serie."""
        number_column = tables.invoice_columns.get(S.INVOICE_NUMBER)
        if number_column is None:
            return 0
        values = await self.load_column_values(db, number_column)
        counters = [
            counter
            for value in values.values()
            if (counter := parse_invoice_counter(config, identifier, value)) is not None
        ]
        return max(counters, default=0)

    async def _get_sequence(
        self,
        db: AsyncSession,
        tenant_id: int,
        database_id: int,
        identifier: str,
        lock: bool = True,
    ) -> Optional[InvoiceNumberSequence]:
        query = select(InvoiceNumberSequence).where(
            InvoiceNumberSequence.tenant_id == tenant_id,
            InvoiceNumberSequence.database_id == database_id,
            InvoiceNumberSequence.series_key == identifier,
        )
        if lock:
            query = query.with_for_update()
        result = await db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def generate_invoice_number(
        self,
        db: AsyncSession,
        tenant_id: int,
        database_id: int,
        tables: InvoiceTables,
        config: NumberingConfig,
        issue_date: date,
    ) -> str:
        """
        Assegna il prossimo numero fattura della serie.

        Logica:
        1. Blocca la riga contatore della serie (SELECT ... FOR UPDATE)
        2. Se non esiste la crea in un savepoint, partendo dal valore più alto
           tra start_number - 1 e i numeri già presenti nella tabella fatture;
           se una transazione concorrente l'ha creata nel frattempo (vincolo
           unique) la rilegge bloccandola
        3. Incrementa il contatore

        Il contatore è aggiornato nella stessa transazione della fattura:
        un rollback libera anche il numero, quindi la serie resta senza buchi.

        Returns:
            str: Numero fattura formattato (es. INV-2024-0001)

        Raises:
            ConflictError: Contatore non disponibile dopo il conflitto
        """
        identifier = build_series_identifier(config, issue_date)
        sequence = await self._get_sequence(db, tenant_id, database_id, identifier)

        if sequence is None:
            seed = max(
                config.start_number - 1,
                await self._max_existing_counter(db, tables, config, identifier),
            )
            try:
                async with db.begin_nested():
                    sequence = InvoiceNumberSequence(
                        tenant_id=tenant_id,
                        database_id=database_id,
                        series_key=identifier,
                        last_number=seed,
                    )
                    db.add(sequence)
            except IntegrityError:
                logger.info("Contatore %s creato da una richiesta concorrente, rilettura", identifier)
                sequence = await self._get_sequence(db, tenant_id, database_id, identifier)
                if sequence is None:
                    raise ConflictError("Impossibile assegnare il numero fattura, riprovare")

        if sequence.last_number < config.start_number - 1:
            sequence.last_number = config.start_number - 1

        sequence.last_number += 1
        await db.flush()

        invoice_number = format_invoice_number(config, issue_date, sequence.last_number)
        logger.debug("Assegnato numero fattura %s", invoice_number)
        return invoice_number

    async def get_next_invoice_number(
        self,
        db: AsyncSession,
        tenant_id: int,
        database_id: int,
        tables: InvoiceTables,
        config: NumberingConfig,
        issue_date: Optional[date] = None,
    ) -> str:
        """Anteprima del prossimo numero: nessun progressivo viene consumato."""
        issue_date = issue_date or date.today()
        identifier = build_series_identifier(config, issue_date)
        sequence = await self._get_sequence(db, tenant_id, database_id, identifier, lock=False)
        if sequence is not None:
            last = sequence.last_number
        else:
            last = await self._max_existing_counter(db, tables, config, identifier)
        last = max(last, config.start_number - 1)
        return format_invoice_number(config, issue_date, last + 1)

    async def get_numbering_stats(
        self,
        db: AsyncSession,
        tenant_id: int,
        database_id: int,
        tables: InvoiceTables,
        config: NumberingConfig,
    ) -> NumberingStats:
        """
        Statistiche di numerazione delle fatture del database.

        Comprende totale fatture, ultimo numero emesso, prossimo numero
        (anteprima), conteggi per serie / anno / mese (YYYY-MM) e importi
        fatturati per valuta.
        """
        stats = NumberingStats(
            next_invoice_number=await self.get_next_invoice_number(
                db, tenant_id, database_id, tables, config
            ),
        )
        if tables.invoices is None:
            return stats

        result = await db.execute(
            select(Row.id).where(Row.table_id == tables.invoices.id).order_by(Row.id.asc())
        )
        row_ids = list(result.scalars().all())
        stats.total_invoices = len(row_ids)
        if not row_ids:
            return stats

        values = await self.load_row_values(db, row_ids)
        columns = tables.invoice_columns
        number_col = columns.get(S.INVOICE_NUMBER)
        series_col = columns.get(S.INVOICE_SERIES)
        date_col = columns.get(S.INVOICE_DATE)
        currency_col = columns.get(S.INVOICE_BASE_CURRENCY)
        total_col = columns.get(S.INVOICE_TOTAL_AMOUNT)

        for row_id in row_ids:
            row_values = values[row_id]
            number = to_text(row_values.get(number_col.id)) if number_col else None
            if number:
                stats.last_invoice_number = number

            series = to_text(row_values.get(series_col.id)) if series_col else None
            series = series or "N/A"
            stats.series_breakdown[series] = stats.series_breakdown.get(series, 0) + 1

            issue_date = parse_cell_date(row_values.get(date_col.id)) if date_col else None
            if issue_date is not None:
                year = f"{issue_date.year:04d}"
                month = f"{issue_date.year:04d}-{issue_date.month:02d}"
                stats.yearly_stats[year] = stats.yearly_stats.get(year, 0) + 1
                stats.monthly_stats[month] = stats.monthly_stats.get(month, 0) + 1

            total = to_decimal(row_values.get(total_col.id)) if total_col else None
            if total is not None:
                currency = (
                    to_text(row_values.get(currency_col.id)) if currency_col else None
                ) or settings.default_currency
                stats.totals_by_currency[currency] = (
                    stats.totals_by_currency.get(currency, Decimal("0")) + total
                )

        return stats


invoice_system_service = InvoiceSystemService()
