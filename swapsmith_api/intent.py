"""
Natural-language command parsing and voice transcription via Groq.

The model only ever produces candidate JSON; everything downstream works
with the validated ParsedCommand.
"""
import json
import logging
import re
from typing import List, Optional

import httpx
from pydantic import ValidationError as SchemaError

from .config import config as app_config
from .models import ParsedCommand, normalize_condition_operator, normalize_weekday

logger = logging.getLogger(__name__)

GROQ_API_URL = "https://api.groq.com/openai/v1"

SYSTEM_PROMPT = """
You extract cryptocurrency trading instructions from user messages.
Respond with a single JSON object and nothing else.

INTENTS:
- "swap": exchange one asset for another now ("Swap 0.1 ETH for BTC").
- "checkout": create a payment link to receive an amount of an asset ("I need 50 USDC on polygon").
- "limit_order": swap once a price condition holds ("Swap 1 ETH for BTC if BTC drops below 40k").
- "dca": swap a fixed amount on a recurring schedule ("Buy 50 USDC of ETH every monday").
- "unknown": anything else.

RULES:
- Assets are upper-case tickers (BTC, ETH, USDC).
- Chains are one of: ethereum, bitcoin, polygon, arbitrum, avalanche, optimism, bsc, base, solana. Use null if not stated.
- Amounts are positive numbers. "40k" means 40000.
- conditionOperator is "gt" for above/rises above and "lt" for below/drops below.
- dayOfWeek is 0 (monday) to 6 (sunday); dayOfMonth is 1 to 31.
- If anything required is missing or ambiguous set success to false and explain in validationErrors.

FORMAT:
{
  "success": boolean,
  "intent": "swap" | "checkout" | "limit_order" | "dca" | "unknown",
  "fromAsset": string | null, "fromChain": string | null,
  "toAsset": string | null, "toChain": string | null,
  "amount": number | null,
  "settleAsset": string | null, "settleNetwork": string | null,
  "settleAmount": number | null, "settleAddress": string | null,
  "conditionAsset": string | null, "conditionOperator": "gt" | "lt" | null, "conditionValue": number | null,
  "frequency": "daily" | "weekly" | "monthly" | null, "dayOfWeek": number | null, "dayOfMonth": number | null,
  "confidence": number,
  "validationErrors": string[],
  "parsedMessage": string,
  "requiresConfirmation": boolean
}
"""

LIMIT_ORDER_PATTERN = re.compile(
    r"swap\s+(\d+(?:\.\d+)?)\s+([a-z0-9]+)\s+(?:for|to|into)\s+([a-z0-9]+)\s+(?:if|when)\s+"
    r"(?:(?!drops\b|rises\b|below\b|above\b)([a-z0-9]+)\s+)?(drops\s+below|below|<|rises\s+above|above|>)\s+(\d+(?:\.\d+)?)(k?)",
    re.IGNORECASE,
)


def parse_limit_order(text: str) -> Optional[ParsedCommand]:
    """
    Parse "Swap 1 ETH for BTC if BTC drops below 40k" without calling the model.

    Returns:
        A limit_order ParsedCommand, or None if the text does not match
    """
    match = LIMIT_ORDER_PATTERN.search(text.replace("$", "").replace(",", ""))
    if not match:
        return None

    amount, from_asset, to_asset, condition_asset, operator, price, k_suffix = match.groups()
    target = float(price) * (1000 if k_suffix else 1)
    condition_asset = (condition_asset or to_asset).upper()
    operator = normalize_condition_operator(" ".join(operator.lower().split()))

    return ParsedCommand(
        success=True,
        intent="limit_order",
        fromAsset=from_asset.upper(),
        toAsset=to_asset.upper(),
        amount=float(amount),
        conditionAsset=condition_asset,
        conditionOperator=operator,
        conditionValue=target,
        confidence=100,
        parsedMessage=(
            f"Swap {float(amount):g} {from_asset.upper()} for {to_asset.upper()} when "
            f"{condition_asset} is {'above' if operator == 'gt' else 'below'} ${target:,.2f}"
        ),
    )


def _semantic_errors(command: ParsedCommand) -> List[str]:
    errors = []
    if command.intent in ("swap", "limit_order", "dca"):
        if not command.fromAsset:
            errors.append("Source asset not specified")
        if not command.toAsset:
            errors.append("Destination asset not specified")
        if not command.amount or command.amount <= 0:
            errors.append("Invalid amount specified")
    if command.intent == "limit_order":
        if not command.conditionOperator:
            errors.append("Price condition not specified")
        if not command.conditionValue or command.conditionValue <= 0:
            errors.append("Invalid target price")
    if command.intent == "dca":
        if not command.frequency:
            errors.append("Frequency not specified")
        elif command.frequency == "weekly" and command.dayOfWeek is None:
            errors.append("Day of week is required for weekly DCA")
        elif command.frequency == "monthly" and command.dayOfMonth is None:
            errors.append("Day of month is required for monthly DCA")
    if command.intent == "checkout":
        if not command.settleAsset:
            errors.append("Asset to receive not specified")
        if not command.settleNetwork:
            errors.append("Network to receive on not specified")
        if not command.settleAmount or command.settleAmount <= 0:
            errors.append("Invalid amount specified")
    if command.intent == "unknown" and not command.validationErrors:
        errors.append("Could not determine intent. Try 'swap', 'receive', a limit order or a DCA.")
    return errors


def validate_parsed_command(raw: dict, original_input: str = "") -> ParsedCommand:
    """Turn raw model output into a ParsedCommand, collecting every problem found."""
    data = dict(raw or {})
    if data.get("intent") not in ("swap", "checkout", "limit_order", "dca"):
        data["intent"] = "unknown"
    try:
        if data.get("conditionOperator"):
            data["conditionOperator"] = normalize_condition_operator(data["conditionOperator"])
        if data.get("dayOfWeek") is not None:
            data["dayOfWeek"] = normalize_weekday(data["dayOfWeek"])
        command = ParsedCommand.model_validate(data)
    except (SchemaError, ValueError) as e:
        logger.warning(f"Unusable parser output for {original_input!r}: {e}")
        return ParsedCommand(
            success=False,
            validationErrors=["Could not understand the request"],
            parsedMessage="Error occurred during parsing",
            requiresConfirmation=False,
        )

    errors = list(command.validationErrors) + _semantic_errors(command)
    command.validationErrors = errors
    command.success = bool(command.success) and not errors
    for field in ("fromAsset", "toAsset", "settleAsset", "conditionAsset"):
        value = getattr(command, field)
        if value:
            setattr(command, field, value.upper())
    return command


async def parse_user_command(text: str, history: Optional[List[dict]] = None) -> ParsedCommand:
    """
    Parse a free-text trading request.

    Args:
        text: What the user typed or said
        history: Previous chat messages ({"role", "content"}) for context

    Returns:
        Validated ParsedCommand; failures come back as success=False
    """
    limit_order = parse_limit_order(text)
    if limit_order:
        return limit_order

    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    messages.extend(history or [])
    messages.append({"role": "user", "content": f'Parse this trading request: "{text}"'})

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{GROQ_API_URL}/chat/completions",
                headers={"Authorization": f"Bearer {app_config.GROQ_API_KEY}"},
                json={
                    "model": app_config.GROQ_MODEL,
                    "messages": messages,
                    "response_format": {"type": "json_object"},
                    "temperature": 0.1,
                    "max_tokens": 500,
                },
                timeout=app_config.HTTP_TIMEOUT_SECONDS,
            )

            if response.status_code != 200:
                logger.warning(f"Groq chat completion error: {response.status_code}")
                return ParsedCommand(
                    validationErrors=["Failed to process your request"],
                    parsedMessage="Error occurred during parsing",
                    requiresConfirmation=False,
                )

            content = response.json()["choices"][0]["message"]["content"] or "{}"
            raw = json.loads(content)
    except httpx.TimeoutException:
        logger.warning(f"Timeout parsing command: {text!r}")
        return ParsedCommand(validationErrors=["The parser timed out, please try again"], requiresConfirmation=False)
    except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
        logger.error(f"Error parsing command {text!r}: {e}")
        return ParsedCommand(
            validationErrors=["Failed to process your request"],
            parsedMessage="Error occurred during parsing",
            requiresConfirmation=False,
        )

    return validate_parsed_command(raw, text)


async def transcribe_audio(audio: bytes, filename: str = "voice.ogg") -> str:
    """
    Transcribe a voice message with Groq Whisper.

    Raises:
        RuntimeError: if transcription fails
    """
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{GROQ_API_URL}/audio/transcriptions",
                headers={"Authorization": f"Bearer {app_config.GROQ_API_KEY}"},
                data={"model": app_config.GROQ_TRANSCRIBE_MODEL, "response_format": "json"},
                files={"file": (filename, audio)},
                timeout=60.0,
            )
    except httpx.HTTPError as e:
        raise RuntimeError(f"Failed to transcribe audio: {e}") from e

    if response.status_code != 200:
        raise RuntimeError(f"Failed to transcribe audio: HTTP {response.status_code}")

    text = response.json().get("text", "").strip()
    logger.info(f"Transcription result: {text}")
    return text
