from decimal import Decimal

import pytest

from kioskpos.app import stock_reconciler
from kioskpos.app.errors import InvalidQuantity, InvalidReason, ItemNotFound
from kioskpos.tests.fakedb import T0, InjectedFailure


def test_adjust_stock_records_signed_difference(db, conn, ctx):
    item = db.add_item(stock=10)

    adj = stock_reconciler.adjust_stock(conn, ctx, item, "-3", "Spoilage", notes="mouldy")

    assert adj.recorded
    assert (adj.system_stock, adj.actual_stock, adj.difference) == (Decimal("10"), Decimal("7"), Decimal("-3"))
    assert db.item(item)["current_stock"] == 7
    row = db.t["stock_adjustments"][0]
    assert row["reason"] == "spoilage"
    assert row["notes"] == "mouldy"
    assert row["adjusted_by"] == ctx.user_id


def test_adjust_stock_clamps_at_zero(db, conn, ctx):
    item = db.add_item(stock=2)

    adj = stock_reconciler.adjust_stock(conn, ctx, item, -5, "theft")

    assert adj.actual_stock == 0
    assert adj.difference == Decimal("-2")
    assert db.item(item)["current_stock"] == 0


def test_adjust_stock_does_not_touch_batches(db, conn, ctx):
    item = db.add_item(stock=5)
    batch = db.add_batch(item, 5, 10, T0)

    stock_reconciler.adjust_stock(conn, ctx, item, -5, "damage")

    assert db.batch(batch)["quantity_remaining"] == 5
    assert not any("inventory_batches" in s for s in db.statements)


@pytest.mark.parametrize(
    "delta,reason,exc",
    [("0", "theft", InvalidQuantity), ("1", "lost", InvalidReason), ("1", None, InvalidReason)],
)
def test_adjust_stock_validates_before_writing(db, conn, ctx, delta, reason, exc):
    item = db.add_item(stock=5)
    with pytest.raises(exc):
        stock_reconciler.adjust_stock(conn, ctx, item, delta, reason)
    assert db.t["stock_adjustments"] == []
    assert db.item(item)["current_stock"] == 5


def test_adjust_stock_unknown_item(db, conn, other_ctx):
    item = db.add_item(stock=5)
    with pytest.raises(ItemNotFound):
        stock_reconciler.adjust_stock(conn, other_ctx, item, 1, "other")


def test_stock_take_sets_counted_quantity(db, conn, ctx):
    item = db.add_item(stock=-4)

    adj = stock_reconciler.stock_take(conn, ctx, item, 6, "counting_error")

    assert adj.difference == Decimal("10")
    assert db.item(item)["current_stock"] == 6


def test_stock_take_matching_count_writes_nothing(db, conn, ctx):
    item = db.add_item(stock=6)

    adj = stock_reconciler.stock_take(conn, ctx, item, "6.0", "counting_error")

    assert not adj.recorded
    assert adj.difference == 0
    assert db.t["stock_adjustments"] == []


def test_stock_take_rejects_negative_count(db, conn, ctx):
    item = db.add_item(stock=6)
    with pytest.raises(InvalidQuantity):
        stock_reconciler.stock_take(conn, ctx, item, -1, "other")


def test_stock_take_many_counts_written_rows(db, conn, ctx):
    a = db.add_item(stock=3)
    b = db.add_item(stock=4)
    c = db.add_item(stock=5)

    results, written = stock_reconciler.stock_take_many(
        conn,
        ctx,
        [
            {"item_id": a, "actual_quantity": 1, "reason": "theft"},
            {"item_id": b, "actual_quantity": 4, "reason": "counting_error"},
            {"item_id": c, "actual_quantity": 7, "reason": "counting_error", "notes": "found crate"},
        ],
    )

    assert written == 2
    assert [r.difference for r in results] == [Decimal("-2"), Decimal("0"), Decimal("2")]
    assert [db.item(x)["current_stock"] for x in (a, b, c)] == [1, 4, 7]


def test_stock_take_many_is_all_or_nothing(db, conn, ctx):
    a = db.add_item(stock=3)
    b = db.add_item(stock=4)

    db.fail_on("insert into stock_adjustments", nth=2)
    with pytest.raises(InjectedFailure):
        stock_reconciler.stock_take_many(
            conn,
            ctx,
            [
                {"item_id": a, "actual_quantity": 1, "reason": "theft"},
                {"item_id": b, "actual_quantity": 1, "reason": "theft"},
            ],
        )

    assert db.t["stock_adjustments"] == []
    assert db.item(a)["current_stock"] == 3


def test_stock_take_many_validates_every_line_first(db, conn, ctx):
    a = db.add_item(stock=3)
    with pytest.raises(InvalidReason):
        stock_reconciler.stock_take_many(
            conn,
            ctx,
            [
                {"item_id": a, "actual_quantity": 1, "reason": "theft"},
                {"item_id": a, "actual_quantity": 1, "reason": "gremlins"},
            ],
        )
    assert db.item(a)["current_stock"] == 3
    assert db.statements == []


def test_stock_take_many_unknown_item_aborts_the_sheet(db, conn, ctx):
    a = db.add_item(stock=3)
    with pytest.raises(ItemNotFound):
        stock_reconciler.stock_take_many(
            conn,
            ctx,
            [
                {"item_id": a, "actual_quantity": 1, "reason": "theft"},
                {"item_id": "99999999-9999-9999-9999-999999999999", "actual_quantity": 1, "reason": "theft"},
            ],
        )
    assert db.t["stock_adjustments"] == []
    assert db.item(a)["current_stock"] == 3
