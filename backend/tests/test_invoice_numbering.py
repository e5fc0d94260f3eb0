"""
Tests for invoice numbering: formato del numero e assegnazione progressiva.
"""

from datetime import date
from unittest.mock import patch

import pytest
from sqlalchemy import select

from app.core.exceptions import ConflictError
from app.core.semantic_types import SemanticColumnType as S
from app.models import InvoiceNumberSequence
from app.services.invoice_system_service import (
    NumberingConfig,
    build_series_identifier,
    format_invoice_number,
    invoice_system_service,
    parse_invoice_counter,
)


# ============================================================
# Formato
# ============================================================


class TestNumberFormat:
    """Composizione e parsing del numero fattura."""

    def test_year_inclusive(self):
        config = NumberingConfig(series="INV")
        assert format_invoice_number(config, date(2024, 3, 15), 1) == "INV-2024-0001"

    def test_without_year(self):
        config = NumberingConfig(series="PRO", include_year=False)
        assert format_invoice_number(config, date(2024, 3, 15), 42) == "PRO-0042"

    def test_with_month_prefix_and_suffix(self):
        config = NumberingConfig(
            series="FT", prefix="ACME", suffix="X", separator="/", include_month=True
        )
        assert build_series_identifier(config, date(2025, 1, 9)) == "FT/2025/01"
        assert format_invoice_number(config, date(2025, 1, 9), 7) == "ACME/FT/2025/01/0007"

    def test_counter_wider_than_padding(self):
        config = NumberingConfig(series="INV", include_year=False)
        assert format_invoice_number(config, date(2024, 1, 1), 12345) == "INV-12345"

    def test_parse_counter(self):
        config = NumberingConfig(series="INV")
        assert parse_invoice_counter(config, "INV-2024", "INV-2024-0007") == 7
        assert parse_invoice_counter(config, "INV-2024", "INV-2023-0009") is None
        assert parse_invoice_counter(config, "INV-2024", "XINV-2024-0001") is None
        assert parse_invoice_counter(config, "INV-2024", None) is None

    def test_parse_counter_escapes_separator(self):
        config = NumberingConfig(series="A.B", separator=".", include_year=False)
        assert parse_invoice_counter(config, "A.B", "A.B.0003") == 3
        assert parse_invoice_counter(config, "A.B", "AxB.0003") is None


# ============================================================
# Assegnazione su database
# ============================================================


class TestNumberAllocation:
    """Contatore per serie con lock di riga."""

    @pytest.mark.asyncio
    async def test_sequential_numbers(self, db_session, seed):
        tables = await invoice_system_service.ensure_invoice_tables(db_session, seed["database_id"])
        config = NumberingConfig(series="INV")
        issue_date = date(2024, 5, 1)

        first = await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, config, issue_date
        )
        second = await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, config, issue_date
        )

        assert first == "INV-2024-0001"
        assert second == "INV-2024-0002"
        assert second > first

    @pytest.mark.asyncio
    async def test_counter_restarts_each_year(self, db_session, seed):
        tables = await invoice_system_service.ensure_invoice_tables(db_session, seed["database_id"])
        config = NumberingConfig(series="INV")

        await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, config, date(2024, 12, 31)
        )
        number = await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, config, date(2025, 1, 1)
        )

        assert number == "INV-2025-0001"

    @pytest.mark.asyncio
    async def test_start_number(self, db_session, seed):
        tables = await invoice_system_service.ensure_invoice_tables(db_session, seed["database_id"])
        config = NumberingConfig(series="INV", start_number=100)

        number = await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, config, date(2024, 1, 1)
        )

        assert number == "INV-2024-0100"

    @pytest.mark.asyncio
    async def test_continues_after_existing_invoices(self, db_session, seed):
        """Un contatore nuovo parte dal numero più alto già presente in tabella."""
        tables = await invoice_system_service.ensure_invoice_tables(db_session, seed["database_id"])
        for existing in ("INV-2024-0007", "INV-2024-0003", "INV-2023-0099"):
            await invoice_system_service.create_row(
                db_session, tables.invoices, tables.invoice_columns,
                {S.INVOICE_NUMBER: existing},
            )

        number = await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, NumberingConfig(series="INV"), date(2024, 6, 1)
        )

        assert number == "INV-2024-0008"

    @pytest.mark.asyncio
    async def test_counter_created_concurrently_is_reread(self, db_session, seed):
        """Se un'altra transazione crea il contatore tra lettura e insert, si usa quello."""
        tables = await invoice_system_service.ensure_invoice_tables(db_session, seed["database_id"])
        db_session.add(
            InvoiceNumberSequence(tenant_id=1, database_id=1, series_key="INV-2024", last_number=1)
        )
        await db_session.flush()

        real_get_sequence = invoice_system_service._get_sequence
        calls = []

        async def not_found_first(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                return None
            return await real_get_sequence(*args, **kwargs)

        with patch.object(invoice_system_service, "_get_sequence", side_effect=not_found_first):
            number = await invoice_system_service.generate_invoice_number(
                db_session, 1, 1, tables, NumberingConfig(series="INV"), date(2024, 4, 1)
            )

        assert number == "INV-2024-0002"
        assert len(calls) == 2

        result = await db_session.execute(select(InvoiceNumberSequence))
        sequences = list(result.scalars().all())
        assert [(s.series_key, s.last_number) for s in sequences] == [("INV-2024", 2)]

    @pytest.mark.asyncio
    async def test_counter_missing_after_conflict(self, db_session, seed):
        tables = await invoice_system_service.ensure_invoice_tables(db_session, seed["database_id"])
        db_session.add(
            InvoiceNumberSequence(tenant_id=1, database_id=1, series_key="INV-2024", last_number=1)
        )
        await db_session.flush()

        with patch.object(invoice_system_service, "_get_sequence", return_value=None):
            with pytest.raises(ConflictError):
                await invoice_system_service.generate_invoice_number(
                    db_session, 1, 1, tables, NumberingConfig(series="INV"), date(2024, 4, 1)
                )

    @pytest.mark.asyncio
    async def test_series_are_independent(self, db_session, seed):
        tables = await invoice_system_service.ensure_invoice_tables(db_session, seed["database_id"])
        issue_date = date(2024, 6, 1)

        await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, NumberingConfig(series="INV"), issue_date
        )
        number = await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, NumberingConfig(series="PRO"), issue_date
        )

        assert number == "PRO-2024-0001"

        result = await db_session.execute(
            select(InvoiceNumberSequence.series_key).order_by(InvoiceNumberSequence.series_key)
        )
        assert list(result.scalars().all()) == ["INV-2024", "PRO-2024"]

    @pytest.mark.asyncio
    async def test_preview_does_not_consume(self, db_session, seed):
        tables = await invoice_system_service.ensure_invoice_tables(db_session, seed["database_id"])
        config = NumberingConfig(series="INV")
        issue_date = date(2024, 2, 2)

        preview = await invoice_system_service.get_next_invoice_number(
            db_session, 1, 1, tables, config, issue_date
        )
        again = await invoice_system_service.get_next_invoice_number(
            db_session, 1, 1, tables, config, issue_date
        )
        allocated = await invoice_system_service.generate_invoice_number(
            db_session, 1, 1, tables, config, issue_date
        )

        assert preview == again == allocated == "INV-2024-0001"
