"""
Pytest configuration and fixtures.

I test di servizio e API usano un database SQLite in memoria (aiosqlite)
con lo stesso schema SQLAlchemy dell'applicazione; la dependency get_db
viene sostituita per puntare a questo database.
"""

import os

# Prima di importare app.*: le impostazioni vengono lette all'import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "testing")

from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import get_db
from app.core.semantic_types import SemanticColumnType as S
from app.main import app
from app.models import Base, Cell, Column, Database, Row, Table, Tenant
from app.services.invoice_system_service import CUSTOMERS, invoice_system_service


# ============================================================
# Fixtures per AsyncSession Mock
# ============================================================


@pytest.fixture
def mock_db():
    """Crea un mock di AsyncSession."""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()
    db.get = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    return db


# ============================================================
# Database SQLite in memoria
# ============================================================


@pytest.fixture
async def engine():
    """Engine aiosqlite condiviso (StaticPool) con schema creato."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite non gestisce correttamente BEGIN/SAVEPOINT: li emettiamo noi
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory, seed) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def add_row(session: AsyncSession, table: Table, values: dict[str, Any]) -> Row:
    """Crea una riga con celle indicate per nome colonna."""
    result = await session.execute(select(Column).where(Column.table_id == table.id))
    columns = {column.name: column for column in result.scalars().all()}
    row = Row(table_id=table.id)
    session.add(row)
    await session.flush()
    for name, value in values.items():
        session.add(Cell(row_id=row.id, column_id=columns[name].id, value=value))
    await session.flush()
    return row


@pytest.fixture
async def seed(session_factory) -> dict[str, Any]:
    """
    Tenant 1 con database 1 e una tabella prodotti:
    riga 1 = Widget, 10.00 USD, IVA 19%; riga 2 = Gadget, 100.00 EUR, IVA 0%.
    """
    async with session_factory() as session:
        tenant = Tenant(
            id=1,
            name="Acme",
            default_currency="USD",
            invoice_series_prefix="INV",
            invoice_include_year=True,
            invoice_start_number=1,
        )
        session.add(tenant)
        session.add(Database(id=1, tenant_id=1, name="Principale", is_default=True))
        await session.flush()

        products = Table(database_id=1, name="products", description="Catalogo")
        session.add(products)
        await session.flush()
        for order, (name, col_type, semantic) in enumerate([
            ("name", "string", S.PRODUCT_NAME),
            ("price", "number", S.PRODUCT_PRICE),
            ("vat", "number", S.PRODUCT_VAT),
            ("currency", "string", S.CURRENCY),
            ("sku", "string", S.PRODUCT_SKU),
        ]):
            session.add(
                Column(
                    table_id=products.id,
                    name=name,
                    type=col_type,
                    semantic_type=semantic.value,
                    order=order,
                )
            )
        await session.flush()

        widget = await add_row(
            session, products,
            {"name": "Widget", "price": "10.00", "vat": 19, "currency": "USD", "sku": "W-1"},
        )
        gadget = await add_row(
            session, products,
            {"name": "Gadget", "price": 100, "vat": 0, "currency": "EUR", "sku": "G-1"},
        )
        await session.commit()

        return {
            "tenant_id": tenant.id,
            "database_id": 1,
            "products_table_id": products.id,
            "widget_id": widget.id,
            "gadget_id": gadget.id,
        }


@pytest.fixture
async def customer(session_factory, seed) -> dict[str, Any]:
    """Tabelle di fatturazione inizializzate e un cliente nella tabella customers."""
    async with session_factory() as session:
        tables = await invoice_system_service.ensure_invoice_tables(session, seed["database_id"])
        assert tables.customers.protected_type == CUSTOMERS
        row = await add_row(
            session, tables.customers,
            {
                "customer_name": "Rossi S.r.l.",
                "customer_email": "amministrazione@rossi.example",
                "customer_tax_id": "RO123456",
                "customer_street": "Via Roma",
                "customer_street_number": "1",
                "customer_city": "Milano",
                "customer_postal_code": "20100",
                "customer_country": "IT",
            },
        )
        await session.commit()
        return {"id": row.id, "name": "Rossi S.r.l."}


# ============================================================
# Client HTTP
# ============================================================


@pytest.fixture
async def client(session_factory, seed) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient sull'app FastAPI con get_db sul database di test."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
