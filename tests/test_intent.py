"""
Tests for command parsing and voice transcription.
"""
import json
import pytest
from unittest.mock import patch, AsyncMock, MagicMock
import httpx

from swapsmith_api.intent import (
    parse_limit_order,
    parse_user_command,
    transcribe_audio,
    validate_parsed_command,
)


def groq_response(payload, status_code: int = 200):
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.json.return_value = {
        "choices": [{"message": {"content": json.dumps(payload)}}]
    }
    return mock_response


class TestParseLimitOrder:
    """Regex fast path for limit orders."""

    def test_drops_below_with_k_suffix(self):
        command = parse_limit_order("Swap 1 ETH for BTC if BTC drops below 40k")

        assert command.success
        assert command.intent == "limit_order"
        assert command.fromAsset == "ETH"
        assert command.toAsset == "BTC"
        assert command.amount == 1.0
        assert command.conditionAsset == "BTC"
        assert command.conditionOperator == "lt"
        assert command.conditionValue == 40000.0

    def test_symbol_and_separators(self):
        command = parse_limit_order("swap 0.5 eth to usdc when eth > $3,500")

        assert command.conditionAsset == "ETH"
        assert command.conditionOperator == "gt"
        assert command.conditionValue == 3500.0
        assert command.toAsset == "USDC"

    def test_condition_asset_defaults_to_target(self):
        command = parse_limit_order("Swap 100 USDC into SOL if above 200")

        assert command.conditionAsset == "SOL"
        assert command.conditionOperator == "gt"

    def test_operator_without_asset(self):
        command = parse_limit_order("Swap 1 ETH for BTC if drops below 40000")

        assert command.conditionAsset == "BTC"
        assert command.conditionOperator == "lt"

    def test_not_a_limit_order(self):
        assert parse_limit_order("Swap 0.1 ETH for BTC") is None

    def test_parsed_message(self):
        command = parse_limit_order("Swap 1 ETH for BTC if BTC rises above 60000")
        assert command.parsedMessage == "Swap 1 ETH for BTC when BTC is above $60,000.00"


class TestValidateParsedCommand:

    def test_valid_swap(self):
        command = validate_parsed_command({
            "success": True, "intent": "swap", "fromAsset": "eth", "toAsset": "btc", "amount": 0.1,
        })

        assert command.success
        assert command.fromAsset == "ETH"
        assert command.toAsset == "BTC"
        assert command.validationErrors == []

    def test_missing_fields_collected(self):
        command = validate_parsed_command({"success": True, "intent": "swap"})

        assert not command.success
        assert "Source asset not specified" in command.validationErrors
        assert "Destination asset not specified" in command.validationErrors
        assert "Invalid amount specified" in command.validationErrors

    def test_weekday_name_normalized(self):
        command = validate_parsed_command({
            "success": True, "intent": "dca", "fromAsset": "USDC", "toAsset": "ETH",
            "amount": 50, "frequency": "weekly", "dayOfWeek": "monday",
        })

        assert command.success
        assert command.dayOfWeek == 0

    def test_weekly_dca_needs_day(self):
        command = validate_parsed_command({
            "success": True, "intent": "dca", "fromAsset": "USDC", "toAsset": "ETH",
            "amount": 50, "frequency": "weekly",
        })

        assert not command.success
        assert "Day of week is required for weekly DCA" in command.validationErrors

    def test_operator_alias(self):
        command = validate_parsed_command({
            "success": True, "intent": "limit_order", "fromAsset": "ETH", "toAsset": "BTC",
            "amount": 1, "conditionOperator": "below", "conditionValue": 40000,
        })

        assert command.success
        assert command.conditionOperator == "lt"

    def test_bad_operator_is_unusable(self):
        command = validate_parsed_command({"success": True, "intent": "limit_order", "conditionOperator": "sideways"})

        assert not command.success
        assert command.validationErrors == ["Could not understand the request"]

    def test_unknown_intent(self):
        command = validate_parsed_command({"success": True, "intent": "stake"})

        assert command.intent == "unknown"
        assert not command.success

    def test_checkout(self):
        command = validate_parsed_command({
            "success": True, "intent": "checkout", "settleAsset": "usdc",
            "settleNetwork": "polygon", "settleAmount": 50,
        })

        assert command.success
        assert command.settleAsset == "USDC"


class TestParseUserCommand:

    @pytest.mark.asyncio
    async def test_limit_order_skips_model(self):
        with patch('httpx.AsyncClient') as mock_client:
            command = await parse_user_command("Swap 1 ETH for BTC if BTC drops below 40k")

        assert command.intent == "limit_order"
        mock_client.assert_not_called()

    @pytest.mark.asyncio
    async def test_model_output_validated(self):
        mock_response = groq_response({
            "success": True, "intent": "swap", "fromAsset": "eth", "toAsset": "btc",
            "amount": 0.1, "confidence": 95, "parsedMessage": "Swap 0.1 ETH for BTC",
        })

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.post = AsyncMock(return_value=mock_response)

            command = await parse_user_command(
                "Swap 0.1 ETH for BTC",
                history=[{"role": "user", "content": "hi"}],
            )

        assert command.success
        assert command.fromAsset == "ETH"
        messages = mock_client.return_value.post.call_args.kwargs["json"]["messages"]
        assert messages[0]["role"] == "system"
        assert messages[1] == {"role": "user", "content": "hi"}
        assert "Swap 0.1 ETH for BTC" in messages[-1]["content"]

    @pytest.mark.asyncio
    async def test_api_error(self):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.post = AsyncMock(return_value=groq_response({}, status_code=500))

            command = await parse_user_command("Swap 0.1 ETH for BTC")

        assert not command.success
        assert command.validationErrors == ["Failed to process your request"]

    @pytest.mark.asyncio
    async def test_timeout(self):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))

            command = await parse_user_command("Swap 0.1 ETH for BTC")

        assert not command.success
        assert "timed out" in command.validationErrors[0]

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"choices": [{"message": {"content": "not json"}}]}

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.post = AsyncMock(return_value=mock_response)

            command = await parse_user_command("Swap 0.1 ETH for BTC")

        assert not command.success


class TestTranscribeAudio:

    @pytest.mark.asyncio
    async def test_success(self):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"text": " Swap 0.1 ETH for BTC "}

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.post = AsyncMock(return_value=mock_response)

            text = await transcribe_audio(b"OggS", "voice.ogg")

        assert text == "Swap 0.1 ETH for BTC"
        assert mock_client.return_value.post.call_args.kwargs["files"]["file"] == ("voice.ogg", b"OggS")

    @pytest.mark.asyncio
    async def test_failure_raises(self):
        mock_response = MagicMock()
        mock_response.status_code = 500

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_client.return_value)
            mock_client.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value.post = AsyncMock(return_value=mock_response)

            with pytest.raises(RuntimeError):
                await transcribe_audio(b"OggS")
