"""
Tests for status vocabularies, request models and document builders.
"""
import pytest
from datetime import datetime
from pydantic import ValidationError

from swapsmith_api.models import (
    CreateDcaRequest,
    CreateLimitOrderRequest,
    CreateSwapRequest,
    SwapStatusUpdate,
    dca_schedule_document,
    infer_network,
    is_forward_transition,
    limit_order_document,
    limit_order_response,
    map_sideshift_status,
    normalize_condition_operator,
    normalize_weekday,
    swap_history_document,
    swap_history_response,
)


class TestConditionOperators:
    """Operator aliases collapse onto gt/lt."""

    @pytest.mark.parametrize("alias", ["gt", ">", "above", "Above", " rises above "])
    def test_greater_aliases(self, alias):
        assert normalize_condition_operator(alias) == "gt"

    @pytest.mark.parametrize("alias", ["lt", "<", "below", "drops below"])
    def test_less_aliases(self, alias):
        assert normalize_condition_operator(alias) == "lt"

    def test_invalid_operator(self):
        with pytest.raises(ValueError):
            normalize_condition_operator("equals")


class TestWeekdays:
    def test_names(self):
        assert normalize_weekday("monday") == 0
        assert normalize_weekday("Sun") == 6

    def test_digits(self):
        assert normalize_weekday("3") == 3
        assert normalize_weekday(4) == 4

    def test_none(self):
        assert normalize_weekday(None) is None

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            normalize_weekday(7)

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            normalize_weekday("someday")


class TestSideShiftStatusMapping:
    """Provider statuses onto the history vocabulary."""

    @pytest.mark.parametrize("provider,expected", [
        ("waiting", "pending"),
        ("pending", "pending"),
        ("processing", "processing"),
        ("settling", "processing"),
        ("review", "processing"),
        ("refunding", "processing"),
        ("refund", "processing"),
        ("settled", "settled"),
        ("refunded", "failed"),
        ("expired", "expired"),
    ])
    def test_mapping(self, provider, expected):
        assert map_sideshift_status(provider) == expected

    def test_unknown_status_is_processing(self):
        assert map_sideshift_status("something-new") == "processing"


class TestForwardTransitions:
    """History status only moves forward."""

    def test_forward(self):
        assert is_forward_transition("pending", "processing")
        assert is_forward_transition("processing", "settled")
        assert is_forward_transition("completed", "failed")

    def test_backward(self):
        assert not is_forward_transition("settled", "pending")
        assert not is_forward_transition("processing", "pending")

    def test_same_status(self):
        assert not is_forward_transition("pending", "pending")

    def test_between_terminal_statuses(self):
        assert not is_forward_transition("settled", "failed")


class TestRequestModels:
    def test_swap_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            CreateSwapRequest(fromAsset="ETH", toAsset="BTC", amount=0)

    def test_limit_order_operator_normalized(self):
        request = CreateLimitOrderRequest(
            fromAsset="ETH", toAsset="BTC", amount=1, conditionOperator="below",
            conditionValue=40000, settleAddress="bc1q...",
        )
        assert request.conditionOperator == "lt"

    def test_limit_order_bad_operator(self):
        with pytest.raises(ValidationError):
            CreateLimitOrderRequest(
                fromAsset="ETH", toAsset="BTC", amount=1, conditionOperator="near",
                conditionValue=40000, settleAddress="bc1q...",
            )

    def test_weekly_dca_requires_day(self):
        with pytest.raises(ValidationError):
            CreateDcaRequest(fromAsset="USDC", toAsset="ETH", amount=50, frequency="weekly", settleAddress="0x1")

    def test_weekly_dca_day_name(self):
        request = CreateDcaRequest(
            fromAsset="USDC", toAsset="ETH", amount=50, frequency="weekly", dayOfWeek="friday", settleAddress="0x1",
        )
        assert request.dayOfWeek == 4

    def test_monthly_dca_requires_day(self):
        with pytest.raises(ValidationError):
            CreateDcaRequest(fromAsset="USDC", toAsset="ETH", amount=50, frequency="monthly", settleAddress="0x1")

    def test_day_of_month_range(self):
        with pytest.raises(ValidationError):
            CreateDcaRequest(
                fromAsset="USDC", toAsset="ETH", amount=50, frequency="monthly", dayOfMonth=32, settleAddress="0x1",
            )

    def test_status_update_rejects_unknown_status(self):
        with pytest.raises(ValidationError):
            SwapStatusUpdate(sideshiftOrderId="abc", status="done")


class TestDocuments:
    def test_limit_order_document_defaults(self):
        doc = limit_order_document(
            owner="telegram:1", from_asset="eth", to_asset="btc", amount=1.0,
            condition_operator="above", condition_value=50000, settle_address="bc1q...",
        )
        assert len(doc["_id"]) == 12
        assert doc["status"] == "pending"
        assert doc["condition_operator"] == "gt"
        assert doc["condition_asset"] == "BTC"
        assert doc["from_chain"] == "ethereum"
        assert doc["to_chain"] == "bitcoin"

    def test_dca_schedule_document_defaults(self):
        slot = datetime(2026, 10, 26, 9, 0)
        doc = dca_schedule_document(
            owner="telegram:1", from_asset="usdc", to_asset="eth", amount=50,
            frequency="weekly", next_execution=slot, settle_address="0x1", day_of_week=0,
        )
        assert doc["next_execution"] == slot
        assert doc["execution_count"] == 0
        assert doc["is_active"] is True
        assert doc["consecutive_failures"] == 0
        assert doc["locked_until"] is None

    def test_swap_history_attempt_key_defaults_to_order_id(self):
        doc = swap_history_document("abc", "telegram:1", "eth", "btc", 0.1)
        assert doc["attempt_key"] == "abc"
        assert doc["status"] == "pending"
        assert doc["tx_hash"] is None

    def test_swap_history_response_is_camel_case(self, sample_swap_entry):
        response = swap_history_response(sample_swap_entry)
        assert response["sideshiftOrderId"] == sample_swap_entry["sideshift_order_id"]
        assert response["fromAmount"] == 0.1
        assert "tx_hash" not in response

    def test_limit_order_response(self, sample_limit_order):
        response = limit_order_response(sample_limit_order)
        assert response["id"] == "lim123456789"
        assert response["conditionOperator"] == "gt"

    def test_infer_network(self):
        assert infer_network("btc") == "bitcoin"
        assert infer_network("UNKNOWNCOIN") == "ethereum"
