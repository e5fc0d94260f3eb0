"""
Tests end-to-end per gli endpoint delle fatture.

Usano l'app FastAPI reale con database SQLite in memoria.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.semantic_types import SemanticColumnType as S, reference_ids
from app.models import Cell, Column, Row
from app.services.invoice_system_service import invoice_system_service

URL = "/api/tenants/1/invoices"


def invoice_payload(seed, **overrides) -> dict:
    payload = {
        "customer_id": 999,
        "base_currency": "USD",
        "invoice_date": "2024-03-15",
        "due_date": (date.today() + timedelta(days=30)).isoformat(),
        "payment_method": "bank_transfer",
        "products": [
            {
                "product_ref_table": "products",
                "product_ref_id": seed["widget_id"],
                "quantity": 2,
            }
        ],
    }
    payload.update(overrides)
    return payload


# ============================================================
# Creazione
# ============================================================


class TestCreateInvoice:

    @pytest.mark.asyncio
    async def test_end_to_end_scenario(self, client, seed):
        """Prima fattura 2024: INV-2024-0001, 20.00 / 3.80 / 23.80; la seconda è 0002."""
        response = await client.post(URL, json=invoice_payload(seed))

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["invoice_number"] == "INV-2024-0001"
        assert body["invoice_series"] == "INV"
        assert Decimal(body["subtotal"]) == Decimal("20.00")
        assert Decimal(body["vat_total"]) == Decimal("3.80")
        assert Decimal(body["grand_total"]) == Decimal("23.80")
        assert body["items_count"] == 1

        second = await client.post(URL, json=invoice_payload(seed))

        assert second.status_code == 201, second.text
        assert second.json()["invoice_number"] == "INV-2024-0002"

    @pytest.mark.asyncio
    async def test_items_reference_invoice_row(self, client, seed, session_factory):
        products = [
            {"product_ref_table": "products", "product_ref_id": seed["widget_id"], "quantity": 1},
            {"product_ref_table": "products", "product_ref_id": seed["gadget_id"], "quantity": 3},
            {"product_ref_table": "products", "product_ref_id": seed["widget_id"], "quantity": "0.5"},
        ]
        response = await client.post(
            URL,
            json=invoice_payload(seed, products=products, exchange_rates={"EUR": "1.1"}),
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert len(body["item_ids"]) == 3

        async with session_factory() as session:
            tables = await invoice_system_service.get_invoice_tables(session, 1)
            invoice_count = await session.execute(
                select(func.count()).select_from(Row).where(Row.table_id == tables.invoices.id)
            )
            assert invoice_count.scalar() == 1

            ref_column = tables.item_columns.get(S.INVOICE_ID)
            refs = await invoice_system_service.load_column_values(session, ref_column)
            assert sorted(refs) == sorted(body["item_ids"])
            assert all(reference_ids(value) == [body["id"]] for value in refs.values())

    @pytest.mark.asyncio
    async def test_totals_written_to_rows(self, client, seed, session_factory):
        response = await client.post(URL, json=invoice_payload(seed))
        body = response.json()

        async with session_factory() as session:
            tables = await invoice_system_service.get_invoice_tables(session, 1)
            values = await invoice_system_service.load_row_values(session, [body["id"], body["item_ids"][0]])
            invoice = values[body["id"]]
            item = values[body["item_ids"][0]]
            inv_cols = tables.invoice_columns
            item_cols = tables.item_columns

            assert invoice[inv_cols.get(S.INVOICE_SUBTOTAL).id] == "20.00"
            assert invoice[inv_cols.get(S.INVOICE_TAX_TOTAL).id] == "3.80"
            assert invoice[inv_cols.get(S.INVOICE_TOTAL_AMOUNT).id] == "23.80"
            assert invoice[inv_cols.get(S.INVOICE_CUSTOMER_ID).id] == [999]
            assert item[item_cols.get(S.UNIT_PRICE).id] == "10.00"
            assert item[item_cols.get(S.PRODUCT_NAME).id] == "Widget"
            assert item[item_cols.get(S.TOTAL_PRICE).id] == "20.00"
            assert item[item_cols.get(S.TAX_AMOUNT).id] == "3.80"

    @pytest.mark.asyncio
    async def test_multi_currency_with_discount_and_fee(self, client, seed):
        payload = invoice_payload(
            seed,
            products=[
                {"product_ref_table": "products", "product_ref_id": seed["widget_id"], "quantity": 2},
                {"product_ref_table": "products", "product_ref_id": seed["gadget_id"], "quantity": 1},
            ],
            exchange_rates={"EUR": "1.1"},
            discount_amount="5",
            late_fee="1.50",
        )
        response = await client.post(URL, json=payload)

        assert response.status_code == 201, response.text
        body = response.json()
        # 20.00 USD + 100 EUR × 1.1 = 130.00; IVA 3.80 (gadget al 0%)
        assert Decimal(body["subtotal"]) == Decimal("130.00")
        assert Decimal(body["vat_total"]) == Decimal("3.80")
        assert Decimal(body["grand_total"]) == Decimal("130.30")
        assert {k: Decimal(v) for k, v in body["totals_by_currency"].items()} == {
            "USD": Decimal("20.00"),
            "EUR": Decimal("100.00"),
        }

    @pytest.mark.asyncio
    async def test_user_values_override_product(self, client, seed):
        products = [{
            "product_ref_table": "products",
            "product_ref_id": seed["widget_id"],
            "quantity": 1,
            "price": "12.00",
            "vat_rate": 10,
        }]
        response = await client.post(URL, json=invoice_payload(seed, products=products))

        body = response.json()
        assert Decimal(body["subtotal"]) == Decimal("12.00")
        assert Decimal(body["vat_total"]) == Decimal("1.20")

    @pytest.mark.asyncio
    async def test_missing_product_uses_supplied_values(self, client, seed):
        products = [{
            "product_ref_table": "products",
            "product_ref_id": 4242,
            "quantity": 2,
            "price": 5,
            "vat_rate": 10,
        }]
        response = await client.post(URL, json=invoice_payload(seed, products=products))

        assert response.status_code == 201, response.text
        body = response.json()
        assert Decimal(body["grand_total"]) == Decimal("11.00")
        assert any("4242" in warning for warning in body["warnings"])

    @pytest.mark.asyncio
    async def test_missing_product_table_defaults_to_zero(self, client, seed):
        products = [{"product_ref_table": "unknown", "product_ref_id": 1, "quantity": 3}]
        response = await client.post(URL, json=invoice_payload(seed, products=products))

        assert response.status_code == 201, response.text
        assert Decimal(response.json()["grand_total"]) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_customer_snapshot(self, client, seed, customer, session_factory):
        response = await client.post(URL, json=invoice_payload(seed, customer_id=customer["id"]))

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["customer_name"] == "Rossi S.r.l."
        assert body["warnings"] == []

        async with session_factory() as session:
            tables = await invoice_system_service.get_invoice_tables(session, 1)
            values = (await invoice_system_service.load_row_values(session, [body["id"]]))[body["id"]]
            assert values[tables.invoice_columns.get(S.CUSTOMER_TAX_ID).id] == "RO123456"

    @pytest.mark.asyncio
    async def test_additional_data_only_for_unlocked_columns(self, client, seed, customer, session_factory):
        async with session_factory() as session:
            tables = await invoice_system_service.get_invoice_tables(session, 1)
            session.add(Column(table_id=tables.invoices.id, name="po_number", type="string", order=99))
            await session.commit()

        response = await client.post(
            URL,
            json=invoice_payload(
                seed,
                additional_data={"po_number": "PO-77", "invoice_number": "HACK-1"},
            ),
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["invoice_number"] == "INV-2024-0001"

        detail = await client.get(f"{URL}/{body['id']}")
        assert detail.json()["data"]["po_number"] == "PO-77"
        assert detail.json()["data"]["invoice_number"] == "INV-2024-0001"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "column,stored,grand_total",
        [
            ("vat", 250, "20.00"),
            ("price", "-5", "0.00"),
        ],
    )
    async def test_out_of_range_product_value_falls_back(
        self, client, seed, session_factory, column, stored, grand_total
    ):
        async with session_factory() as session:
            result = await session.execute(
                select(Cell)
                .join(Column, Cell.column_id == Column.id)
                .where(Cell.row_id == seed["widget_id"], Column.name == column)
            )
            result.scalar_one().value = stored
            await session.commit()

        response = await client.post(URL, json=invoice_payload(seed))

        assert response.status_code == 201, response.text
        body = response.json()
        assert Decimal(body["grand_total"]) == Decimal(grand_total)
        assert any(column in warning and "fuori intervallo" in warning for warning in body["warnings"])


# ============================================================
# Validazione ed errori
# ============================================================


class TestCreateInvoiceErrors:

    @pytest.mark.asyncio
    async def test_past_due_date(self, client, seed):
        yesterday = (date.today() - timedelta(days=1)).isoformat()
        response = await client.post(URL, json=invoice_payload(seed, due_date=yesterday))

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "VALIDATION_ERROR"
        assert any(error["field"] == "due_date" for error in body["errors"])

    @pytest.mark.asyncio
    async def test_zero_products(self, client, seed):
        response = await client.post(URL, json=invoice_payload(seed, products=[]))

        assert response.status_code == 400
        messages = [error["message"] for error in response.json()["errors"]]
        assert "È richiesto almeno un prodotto" in messages

    @pytest.mark.asyncio
    async def test_products_omitted(self, client, seed):
        payload = invoice_payload(seed)
        del payload["products"]
        response = await client.post(URL, json=payload)

        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "product",
        [
            {"product_ref_table": "products", "product_ref_id": 1, "quantity": 0},
            {"product_ref_table": "products", "product_ref_id": 1, "quantity": 1, "price": -1},
            {"product_ref_table": "products", "product_ref_id": 1, "quantity": 1, "currency": "EURO"},
            {"product_ref_table": "", "product_ref_id": 1, "quantity": 1},
            {"product_ref_table": "products", "product_ref_id": 0, "quantity": 1},
        ],
    )
    async def test_invalid_product(self, client, seed, product):
        response = await client.post(URL, json=invoice_payload(seed, products=[product]))

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"].startswith("products")

    @pytest.mark.asyncio
    async def test_invalid_base_currency(self, client, seed):
        response = await client.post(URL, json=invoice_payload(seed, base_currency="US"))

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_due_date_before_invoice_date(self, client, seed):
        future = date.today() + timedelta(days=10)
        response = await client.post(
            URL,
            json=invoice_payload(
                seed,
                invoice_date=(future + timedelta(days=5)).isoformat(),
                due_date=future.isoformat(),
            ),
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client, seed):
        response = await client.post("/api/tenants/77/invoices", json=invoice_payload(seed))

        assert response.status_code == 404
        assert response.json()["error_code"] == "RESOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_validation_error_writes_nothing(self, client, seed, session_factory):
        await client.post(URL, json=invoice_payload(seed, products=[]))

        async with session_factory() as session:
            tables = await invoice_system_service.get_invoice_tables(session, 1)
            assert tables.invoices is None

    @pytest.mark.asyncio
    async def test_oversized_quantity(self, client, seed):
        products = [{"product_ref_table": "products", "product_ref_id": seed["widget_id"], "quantity": "1e30"}]
        response = await client.post(URL, json=invoice_payload(seed, products=products))

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"].startswith("products")

    @pytest.mark.asyncio
    async def test_oversized_exchange_rate(self, client, seed):
        response = await client.post(URL, json=invoice_payload(seed, exchange_rates={"EUR": "1e40"}))

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "exchange_rates"


# ============================================================
# Lista e dettaglio
# ============================================================


class TestListAndDetail:

    @pytest.mark.asyncio
    async def test_list_with_stats(self, client, seed, customer):
        await client.post(URL, json=invoice_payload(seed, customer_id=customer["id"]))
        await client.post(URL, json=invoice_payload(seed, customer_id=customer["id"]))

        response = await client.get(URL)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [i["invoice_number"] for i in body["invoices"]] == ["INV-2024-0002", "INV-2024-0001"]
        assert body["invoices"][0]["customer_name"] == "Rossi S.r.l."
        assert body["invoices"][0]["customer_email"] == "amministrazione@rossi.example"
        assert body["invoices"][0]["customer_address"] == "Via Roma 1, 20100 Milano, IT"

        stats = body["stats"]
        assert stats["total_invoices"] == 2
        assert stats["last_invoice_number"] == "INV-2024-0002"
        assert stats["series_breakdown"] == {"INV": 2}
        assert stats["yearly_stats"] == {"2024": 2}
        assert stats["monthly_stats"] == {"2024-03": 2}
        assert Decimal(stats["totals_by_currency"]["USD"]) == Decimal("47.60")
        assert stats["next_invoice_number"] == f"INV-{date.today().year}-0001"

    @pytest.mark.asyncio
    async def test_list_before_any_invoice(self, client, seed):
        response = await client.get(URL)

        assert response.status_code == 200
        body = response.json()
        assert body["invoices"] == []
        assert body["stats"]["total_invoices"] == 0

    @pytest.mark.asyncio
    async def test_pagination(self, client, seed):
        for _ in range(3):
            await client.post(URL, json=invoice_payload(seed))

        response = await client.get(URL, params={"page": 2, "per_page": 2})

        body = response.json()
        assert body["total"] == 3
        assert body["pages"] == 2
        assert [i["invoice_number"] for i in body["invoices"]] == ["INV-2024-0001"]

    @pytest.mark.asyncio
    async def test_detail(self, client, seed, customer):
        created = (await client.post(URL, json=invoice_payload(seed, customer_id=customer["id"]))).json()

        response = await client.get(f"{URL}/{created['id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["invoice_number"] == "INV-2024-0001"
        assert body["customer"]["name"] == "Rossi S.r.l."
        assert [item["id"] for item in body["items"]] == created["item_ids"]
        assert body["items"][0]["data"]["product_name"] == "Widget"

    @pytest.mark.asyncio
    async def test_detail_of_non_invoice_row(self, client, seed):
        created = (await client.post(URL, json=invoice_payload(seed))).json()

        response = await client.get(f"{URL}/{created['item_ids'][0]}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_next_number_preview(self, client, seed):
        params = {"invoice_date": "2024-03-15"}
        before = await client.get(f"{URL}/next-number", params=params)
        await client.post(URL, json=invoice_payload(seed))
        after = await client.get(f"{URL}/next-number", params=params)

        assert before.json() == {"series": "INV", "invoice_number": "INV-2024-0001"}
        assert after.json()["invoice_number"] == "INV-2024-0002"


# ============================================================
# Cambio di stato ed eliminazione
# ============================================================


class TestUpdateAndDelete:

    @pytest.mark.asyncio
    async def test_update_status(self, client, seed):
        created = (await client.post(URL, json=invoice_payload(seed))).json()

        response = await client.patch(f"{URL}/{created['id']}", json={"status": "paid"})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["data"]["status"] == "paid"
        assert body["data"]["total_amount"] == "23.80"

        detail = await client.get(f"{URL}/{created['id']}")
        assert detail.json()["data"]["status"] == "paid"

    @pytest.mark.asyncio
    async def test_update_invalid_status(self, client, seed):
        created = (await client.post(URL, json=invoice_payload(seed))).json()

        response = await client.patch(f"{URL}/{created['id']}", json={"status": "archived"})

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "status"

    @pytest.mark.asyncio
    async def test_update_non_invoice_row(self, client, seed):
        created = (await client.post(URL, json=invoice_payload(seed))).json()

        response = await client.patch(f"{URL}/{created['item_ids'][0]}", json={"status": "paid"})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_removes_invoice_and_items(self, client, seed, session_factory):
        first = (await client.post(URL, json=invoice_payload(seed))).json()
        second = (await client.post(URL, json=invoice_payload(seed))).json()

        response = await client.delete(f"{URL}/{first['id']}")

        assert response.status_code == 204
        assert (await client.get(f"{URL}/{first['id']}")).status_code == 404

        async with session_factory() as session:
            deleted_ids = [first["id"], *first["item_ids"]]
            rows = await session.execute(select(func.count()).select_from(Row).where(Row.id.in_(deleted_ids)))
            cells = await session.execute(
                select(func.count()).select_from(Cell).where(Cell.row_id.in_(deleted_ids))
            )
            assert rows.scalar() == 0
            assert cells.scalar() == 0

        remaining = await client.get(f"{URL}/{second['id']}")
        assert remaining.status_code == 200
        assert [item["id"] for item in remaining.json()["items"]] == second["item_ids"]

    @pytest.mark.asyncio
    async def test_delete_non_invoice_row(self, client, seed):
        created = (await client.post(URL, json=invoice_payload(seed))).json()

        response = await client.delete(f"{URL}/{created['item_ids'][0]}")
        product = await client.delete(f"{URL}/{seed['widget_id']}")

        assert response.status_code == 404
        assert product.status_code == 404
        assert (await client.get(f"{URL}/{created['id']}")).status_code == 200


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
