import pytest

from tests.shop_helpers import _build_storefront


@pytest.fixture
def shop():
    storefront, client, spotify, stripe, ledger = _build_storefront()
    with client:
        yield storefront, client, spotify, stripe, ledger


@pytest.fixture
def raw_bundles() -> dict:
    return {
        "starter": {"name": " Starter ", "playlists": "pl-1", "free": True},
        "golden": {"name": "Golden Era", "price": 499, "playlists": ["pl-a", "pl-b"]},
    }
