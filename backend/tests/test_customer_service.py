"""
Customer registry: intake upserts, delivery counts, lookups by phone.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from pymongo.errors import DuplicateKeyError

from conftest import make_cursor, make_db
from services import customer_service


@pytest.mark.asyncio
async def test_first_order_creates_profile():
    db = make_db()
    db.customers.update_one = AsyncMock(return_value=MagicMock(upserted_id="C1"))
    with patch("services.customer_service.database.get_db", return_value=db):
        await customer_service.record_order("98000 00000", "Lakshmi", "ORD-1")

    filter_, update = db.customers.update_one.call_args[0][:2]
    assert filter_ == {"phone_number": "+919800000000", "order_ids": {"$ne": "ORD-1"}}
    assert update["$setOnInsert"]["phone_number"] == "+919800000000"
    assert update["$setOnInsert"]["address"] == ""
    assert update["$setOnInsert"]["delivered_orders"] == 0
    assert "address" not in update["$set"]
    assert update["$inc"] == {"total_orders": 1}
    assert db.customers.update_one.call_args.kwargs["upsert"] is True


@pytest.mark.asyncio
async def test_repeat_order_refreshes_address():
    db = make_db()
    db.customers.update_one = AsyncMock(return_value=MagicMock(upserted_id=None))
    with patch("services.customer_service.database.get_db", return_value=db):
        await customer_service.record_order("+919800000000", "Lakshmi R", "ORD-2", address="12 Temple St")

    update = db.customers.update_one.call_args[0][1]
    assert update["$set"]["address"] == "12 Temple St"
    assert update["$set"]["name"] == "Lakshmi R"
    assert "address" not in update["$setOnInsert"]
    assert update["$push"] == {"order_ids": "ORD-2"}


@pytest.mark.asyncio
async def test_order_already_recorded_is_not_counted_again():
    db = make_db()
    db.customers.update_one = AsyncMock(side_effect=DuplicateKeyError("E11000 duplicate key"))
    with patch("services.customer_service.database.get_db", return_value=db):
        await customer_service.record_order("+919800000000", "Lakshmi", "ORD-1")

    db.customers.update_one.assert_called_once()


@pytest.mark.asyncio
async def test_record_delivery_counts_against_normalised_phone():
    db = make_db()
    db.customers.update_one = AsyncMock()
    with patch("services.customer_service.database.get_db", return_value=db):
        await customer_service.record_delivery("9800000000")

    filter_, update = db.customers.update_one.call_args[0][:2]
    assert filter_ == {"phone_number": "+919800000000"}
    assert update["$inc"] == {"delivered_orders": 1}
    assert db.customers.update_one.call_args.kwargs.get("upsert") is None


@pytest.mark.asyncio
async def test_get_customer():
    db = make_db()
    db.customers.find_one = AsyncMock(side_effect=[
        {"phone_number": "+919800000000", "name": "Lakshmi", "total_orders": 3},
        None,
    ])
    with patch("services.customer_service.database.get_db", return_value=db):
        found = await customer_service.get_customer("9800000000")
        missing = await customer_service.get_customer("9811111111")

    assert found.name == "Lakshmi"
    assert found.total_orders == 3
    assert missing is None
    assert db.customers.find_one.call_args_list[0][0][0] == {"phone_number": "+919800000000"}


@pytest.mark.asyncio
async def test_search_escapes_term_and_sorts():
    db = make_db()
    cursor = make_cursor([{"phone_number": "+919800000000", "name": "Lakshmi"}])
    db.customers.find = MagicMock(return_value=cursor)
    with patch("services.customer_service.database.get_db", return_value=db):
        customers = await customer_service.list_customers(search=" +9198 ", sort_by="orders")

    assert [c.name for c in customers] == ["Lakshmi"]
    query = db.customers.find.call_args[0][0]
    assert {"phone_number": {"$regex": r"\+9198"}} in query["$or"]
    assert {"name": {"$regex": r"\+9198", "$options": "i"}} in query["$or"]
    cursor.sort.assert_called_once_with("total_orders", -1)


@pytest.mark.asyncio
async def test_orders_grouped_by_phone():
    db = make_db()
    db.orders.find = MagicMock(return_value=make_cursor([{"order_id": "ORD-2"}, {"order_id": "ORD-1"}]))
    with patch("services.customer_service.database.get_db", return_value=db):
        orders = await customer_service.get_orders_by_customer_phone("98000 00000")

    assert [o["order_id"] for o in orders] == ["ORD-2", "ORD-1"]
    assert db.orders.find.call_args[0][0] == {"customer_phone": "+919800000000"}
