"""
Pytest fixtures and configuration for tests.
"""
import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

from swapsmith_api.models import Order, OrderStatus, Quote


# =============================================================================
# MOCK DATA
# =============================================================================

@pytest.fixture
def sample_user():
    """Sample user document."""
    return {
        "user_id": "telegram:123456789",
        "tg_user_id": 123456789,
        "tg_username": "alice",
        "wallet_address": "0x52908400098527886E0F7030069857D2E4169EE7",
        "created_at": datetime.utcnow(),
    }


@pytest.fixture
def sample_limit_order():
    """Pending limit order: buy BTC with ETH once BTC trades above 50000."""
    now = datetime.utcnow()
    return {
        "_id": "lim123456789",
        "owner": "telegram:123456789",
        "wallet_address": None,
        "from_asset": "ETH",
        "from_chain": "ethereum",
        "to_asset": "BTC",
        "to_chain": "bitcoin",
        "amount": 1.0,
        "condition_asset": "BTC",
        "condition_operator": "gt",
        "condition_value": 50000.0,
        "settle_address": "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq",
        "status": "pending",
        "sideshift_order_id": None,
        "failure_reason": None,
        "trigger_price": None,
        "claimed_at": None,
        "created_at": now,
        "updated_at": now,
    }


@pytest.fixture
def sample_dca_schedule():
    """Weekly Monday 09:00 schedule whose slot is a week overdue."""
    return {
        "_id": "dca123456789",
        "owner": "telegram:123456789",
        "wallet_address": None,
        "from_asset": "USDC",
        "from_chain": "ethereum",
        "to_asset": "ETH",
        "to_chain": "ethereum",
        "amount": 50.0,
        "frequency": "weekly",
        "day_of_week": 0,
        "day_of_month": None,
        "settle_address": "0x52908400098527886E0F7030069857D2E4169EE7",
        "smart": False,
        "next_execution": datetime(2026, 10, 12, 9, 0),
        "last_executed": None,
        "execution_count": 3,
        "is_active": True,
        "consecutive_failures": 0,
        "retry_after": None,
        "locked_until": None,
        "last_error": None,
        "created_at": datetime(2026, 9, 1, 9, 0),
    }


@pytest.fixture
def sample_swap_entry():
    """Swap history entry for a placed SideShift order."""
    now = datetime.utcnow()
    return {
        "sideshift_order_id": "f173118220f1461841da",
        "attempt_key": "f173118220f1461841da",
        "user_id": "telegram:123456789",
        "wallet_address": None,
        "quote_id": "459abcfe-fc2a-4a5b-ae2a-04b2e2ce1b2e",
        "from_asset": "ETH",
        "from_network": "ethereum",
        "from_amount": 0.1,
        "to_asset": "BTC",
        "to_network": "bitcoin",
        "settle_amount": "0.00512",
        "deposit_address": "0x7d5a1e2c3b4f6a8d9e0f1a2b3c4d5e6f7a8b9c0d",
        "volume_usd": 350.0,
        "source": "manual",
        "status": "pending",
        "tx_hash": None,
        "created_at": now,
        "updated_at": now,
    }


@pytest.fixture
def sample_quote():
    return Quote(
        id="459abcfe-fc2a-4a5b-ae2a-04b2e2ce1b2e",
        depositCoin="ETH",
        depositNetwork="ethereum",
        settleCoin="BTC",
        settleNetwork="bitcoin",
        depositAmount="1.0",
        settleAmount="0.0512",
        rate="0.0512",
    )


@pytest.fixture
def sample_order():
    return Order(
        id="f173118220f1461841da",
        quoteId="459abcfe-fc2a-4a5b-ae2a-04b2e2ce1b2e",
        depositAddress="0x7d5a1e2c3b4f6a8d9e0f1a2b3c4d5e6f7a8b9c0d",
        depositCoin="ETH",
        depositNetwork="ethereum",
        depositAmount="1.0",
        settleCoin="BTC",
        settleNetwork="bitcoin",
        settleAddress="bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq",
        settleAmount="0.0512",
        status="waiting",
    )


# =============================================================================
# MOCK SERVICES
# =============================================================================

@pytest.fixture
def mock_sideshift(sample_quote, sample_order):
    """SideShift client that quotes and places orders successfully."""
    client = MagicMock()
    client.create_quote = AsyncMock(return_value=sample_quote)
    client.create_order = AsyncMock(return_value=sample_order)
    client.get_order_status = AsyncMock(
        return_value=OrderStatus(id=sample_order.id, status="waiting")
    )
    client.create_checkout = AsyncMock()
    client.get_pairs = AsyncMock(return_value=[])
    return client


@pytest.fixture
def mock_notifier():
    notifier = MagicMock()
    notifier.notify = AsyncMock(return_value={"success": True})
    return notifier


# =============================================================================
# DATABASE MOCKS
# =============================================================================

@pytest.fixture
def mock_collection():
    """Create a mock MongoDB collection."""
    def _create_collection():
        collection = AsyncMock()
        collection.find_one = AsyncMock(return_value=None)
        collection.find_one_and_update = AsyncMock(return_value=None)
        collection.insert_one = AsyncMock()
        collection.update_one = AsyncMock(return_value=MagicMock(modified_count=1))
        collection.delete_one = AsyncMock()
        collection.count_documents = AsyncMock(return_value=0)
        collection.find = MagicMock()
        collection.find.return_value.to_list = AsyncMock(return_value=[])
        collection.create_index = AsyncMock()
        return collection
    return _create_collection


@pytest.fixture
def mock_db_service(mock_collection):
    """Create a DatabaseService backed by mocked collections."""
    from swapsmith_api.database import DatabaseService

    with patch.object(DatabaseService, '__init__', lambda self, *args, **kwargs: None):
        service = DatabaseService.__new__(DatabaseService)
        # Give each collection its own mock
        service.users = mock_collection()
        service.limit_orders = mock_collection()
        service.dca_schedules = mock_collection()
        service.swap_history = mock_collection()
        service.watched_orders = mock_collection()
        service.price_alerts = mock_collection()
        service.client = MagicMock()
        service.db = MagicMock()
        return service


@pytest.fixture
def mock_db():
    """DatabaseService stand-in for component tests that don't care about queries."""
    db = MagicMock()
    for name in (
        "get_user",
        "get_limit_order",
        "claim_limit_order",
        "release_limit_order",
        "update_limit_order_status",
        "cancel_limit_order",
        "create_limit_order",
        "get_swap_history_entry",
        "get_swap_history_by_attempt",
        "create_swap_history_entry",
        "attach_provider_order",
        "update_swap_history_status",
        "claim_dca_schedule",
        "record_dca_success",
        "record_dca_failure",
        "create_dca_schedule",
        "cancel_dca_schedule",
        "watch_order",
        "update_watched_order",
        "remove_watched_order",
    ):
        setattr(db, name, AsyncMock(return_value=None))
    db.list_pending_limit_orders = AsyncMock(return_value=[])
    db.list_stale_triggered_limit_orders = AsyncMock(return_value=[])
    db.list_due_dca_schedules = AsyncMock(return_value=[])
    db.list_watched_orders = AsyncMock(return_value=[])
    db.list_swap_history = AsyncMock(return_value=[])
    db.create_swap_history_entry = AsyncMock(side_effect=lambda entry: entry)
    db.create_dca_schedule = AsyncMock(side_effect=lambda schedule: schedule)
    db.create_limit_order = AsyncMock(side_effect=lambda order: order)
    return db
