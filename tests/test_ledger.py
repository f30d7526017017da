import pytest

from setshop.ledger import MemoryPurchaseLedger, SqlitePurchaseLedger


@pytest.fixture(params=["memory", "sqlite"])
def ledger(request, tmp_path):
    if request.param == "memory":
        yield MemoryPurchaseLedger()
        return
    sqlite_ledger = SqlitePurchaseLedger(tmp_path / "data" / "purchases.db")
    yield sqlite_ledger
    sqlite_ledger.close()


@pytest.mark.asyncio
async def test_record_purchase_is_idempotent(ledger) -> None:
    assert await ledger.record_purchase("user-1", "golden") is True
    assert await ledger.record_purchase("user-1", "golden") is False

    assert await ledger.has_purchased("user-1", "golden") is True
    assert await ledger.purchased_bundles("user-1") == {"golden"}


@pytest.mark.asyncio
async def test_purchases_are_per_user(ledger) -> None:
    await ledger.record_purchase("user-1", "golden", purchased_at=1)
    await ledger.record_purchase("user-2", "silver", purchased_at=2)

    assert await ledger.has_purchased("user-2", "golden") is False
    assert await ledger.purchased_bundles("user-1") == {"golden"}
    assert await ledger.purchased_bundles("nobody") == set()


@pytest.mark.asyncio
async def test_sqlite_ledger_survives_reopen(tmp_path) -> None:
    path = tmp_path / "purchases.db"
    first = SqlitePurchaseLedger(path)
    await first.record_purchase("user-1", "golden")
    first.close()

    second = SqlitePurchaseLedger(path)
    try:
        assert await second.has_purchased("user-1", "golden") is True
        assert await second.record_purchase("user-1", "golden") is False
    finally:
        second.close()
