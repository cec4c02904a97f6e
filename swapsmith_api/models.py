"""
MongoDB document schemas, status vocabularies and API models for SwapSmith.
"""
from datetime import datetime
from typing import List, Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator, model_validator
from nanoid import generate


# =============================================================================
# STATUS VOCABULARIES
# =============================================================================

LIMIT_PENDING = "pending"
LIMIT_TRIGGERED = "triggered"  # Claimed by the scheduler, execution in flight
LIMIT_EXECUTED = "executed"
LIMIT_FAILED = "failed"
LIMIT_CANCELLED = "cancelled"
LIMIT_STATUSES = (LIMIT_PENDING, LIMIT_TRIGGERED, LIMIT_EXECUTED, LIMIT_FAILED, LIMIT_CANCELLED)

SWAP_STATUSES = ("pending", "processing", "completed", "settled", "failed", "cancelled", "expired")
# Reconciliation stops polling at these. Webhooks may still move completed to settled.
TERMINAL_SWAP_STATUSES = frozenset({"completed", "settled", "failed", "cancelled", "expired"})

# History status only moves to a strictly higher rank
SWAP_STATUS_RANK = {
    "pending": 0,
    "processing": 1,
    "completed": 2,
    "settled": 3,
    "failed": 3,
    "cancelled": 3,
    "expired": 3,
}

# SideShift shift status -> history status
SIDESHIFT_STATUS_MAP = {
    "waiting": "pending",
    "pending": "pending",
    "processing": "processing",
    "settling": "processing",
    "review": "processing",
    "refunding": "processing",
    "refund": "processing",
    "multiple": "processing",
    "settled": "settled",
    "refunded": "failed",
    "expired": "expired",
}

CONDITION_ALIASES = {
    "gt": "gt",
    ">": "gt",
    "above": "gt",
    "rises above": "gt",
    "lt": "lt",
    "<": "lt",
    "below": "lt",
    "drops below": "lt",
}

FREQUENCIES = ("daily", "weekly", "monthly")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

SWAP_SOURCES = ("manual", "dca", "limit", "stake")

# Ticker -> SideShift network, used when a request omits the chain
NETWORK_BY_SYMBOL = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "USDT": "ethereum",
    "USDC": "ethereum",
    "DAI": "ethereum",
    "WBTC": "ethereum",
    "BNB": "bsc",
    "AVAX": "avalanche",
    "MATIC": "polygon",
    "POL": "polygon",
    "ARB": "arbitrum",
    "OP": "optimism",
    "BASE": "base",
    "LTC": "litecoin",
    "DOGE": "doge",
    "TRX": "tron",
}


def normalize_condition_operator(operator: str) -> str:
    """Map 'above'/'>'/'gt' and 'below'/'<'/'lt' onto gt/lt."""
    key = (operator or "").strip().lower()
    if key not in CONDITION_ALIASES:
        raise ValueError(f"Invalid condition operator: {operator!r}")
    return CONDITION_ALIASES[key]


def normalize_weekday(day: Union[int, str, None]) -> Optional[int]:
    """Weekday as 0 (Monday) .. 6 (Sunday). Accepts names or numbers."""
    if day is None or day == "":
        return None
    if isinstance(day, str):
        name = day.strip().lower()
        if name.isdigit():
            day = int(name)
        else:
            for index, weekday in enumerate(WEEKDAYS):
                if weekday.startswith(name[:3]):
                    return index
            raise ValueError(f"Invalid day of week: {day!r}")
    if not 0 <= int(day) <= 6:
        raise ValueError(f"Invalid day of week: {day!r}")
    return int(day)


def infer_network(symbol: str) -> str:
    return NETWORK_BY_SYMBOL.get((symbol or "").upper(), "ethereum")


def map_sideshift_status(provider_status: str) -> str:
    return SIDESHIFT_STATUS_MAP.get((provider_status or "").lower(), "processing")


def is_forward_transition(current: str, new: str) -> bool:
    """True when moving history status from current to new is allowed."""
    if current == new:
        return False
    return SWAP_STATUS_RANK.get(new, -1) > SWAP_STATUS_RANK.get(current, -1)


# =============================================================================
# PYDANTIC MODELS (for API validation)
# =============================================================================

class CreateSwapRequest(BaseModel):
    fromAsset: str
    fromChain: Optional[str] = None
    toAsset: str
    toChain: Optional[str] = None
    amount: float = Field(gt=0)
    userId: Optional[str] = None
    walletAddress: Optional[str] = None


class CreateOrderRequest(BaseModel):
    quoteId: str
    settleAddress: str
    refundAddress: Optional[str] = None
    userId: Optional[str] = None
    walletAddress: Optional[str] = None


class CreateLimitOrderRequest(BaseModel):
    fromAsset: str
    fromChain: Optional[str] = None
    toAsset: str
    toChain: Optional[str] = None
    amount: float = Field(gt=0)
    conditionAsset: Optional[str] = None  # Defaults to toAsset
    conditionOperator: str
    conditionValue: float = Field(gt=0)
    settleAddress: str
    walletAddress: Optional[str] = None

    @field_validator("conditionOperator")
    @classmethod
    def _normalize_operator(cls, value: str) -> str:
        return normalize_condition_operator(value)


class CreateDcaRequest(BaseModel):
    fromAsset: str
    fromChain: Optional[str] = None
    toAsset: str
    toChain: Optional[str] = None
    amount: float = Field(gt=0)
    frequency: Literal["daily", "weekly", "monthly"]
    dayOfWeek: Optional[Union[int, str]] = None
    dayOfMonth: Optional[int] = Field(default=None, ge=1, le=31)
    settleAddress: str
    smart: bool = False
    walletAddress: Optional[str] = None

    @field_validator("dayOfWeek")
    @classmethod
    def _normalize_weekday(cls, value):
        return normalize_weekday(value)

    @model_validator(mode="after")
    def _check_frequency_fields(self):
        if self.frequency == "weekly" and self.dayOfWeek is None:
            raise ValueError("dayOfWeek is required for weekly DCA")
        if self.frequency == "monthly" and self.dayOfMonth is None:
            raise ValueError("dayOfMonth is required for monthly DCA")
        return self


class CreatePriceAlertRequest(BaseModel):
    coin: str
    network: Optional[str] = None
    name: Optional[str] = None
    targetPrice: float = Field(gt=0)
    condition: str

    @field_validator("condition")
    @classmethod
    def _normalize_condition(cls, value: str) -> str:
        return normalize_condition_operator(value)


class UpdatePriceAlertRequest(BaseModel):
    """Partial update; fields left out are not touched."""
    targetPrice: Optional[float] = Field(default=None, gt=0)
    condition: Optional[str] = None
    isActive: Optional[bool] = None

    @field_validator("condition")
    @classmethod
    def _normalize_condition(cls, value: Optional[str]) -> Optional[str]:
        return normalize_condition_operator(value) if value is not None else None


class SwapStatusUpdate(BaseModel):
    sideshiftOrderId: str
    status: Literal["pending", "processing", "completed", "settled", "failed", "cancelled", "expired"]
    txHash: Optional[str] = None
    force: bool = False  # Administrative correction, allows moving status backwards


class Quote(BaseModel):
    """SideShift fixed-rate quote."""
    id: str
    depositCoin: str
    depositNetwork: str
    settleCoin: str
    settleNetwork: str
    depositAmount: str
    settleAmount: str
    rate: str
    expiresAt: Optional[str] = None
    affiliateId: Optional[str] = None


class Order(BaseModel):
    """SideShift fixed shift created from a quote."""
    id: str
    quoteId: Optional[str] = None
    depositAddress: str
    depositMemo: Optional[str] = None
    depositCoin: str
    depositNetwork: str
    depositAmount: Optional[str] = None
    settleCoin: str
    settleNetwork: str
    settleAddress: str
    settleAmount: Optional[str] = None
    status: str = "waiting"
    expiresAt: Optional[str] = None


class OrderStatus(BaseModel):
    id: str
    status: str
    depositCoin: Optional[str] = None
    settleCoin: Optional[str] = None
    depositAmount: Optional[str] = None
    settleAmount: Optional[str] = None
    depositHash: Optional[str] = None
    settleHash: Optional[str] = None
    updatedAt: Optional[str] = None


class Checkout(BaseModel):
    id: str
    url: str
    settleCoin: str
    settleNetwork: str
    settleAmount: str
    settleAddress: str


class ParsedCommand(BaseModel):
    """Typed intent returned by the command parser."""
    success: bool = False
    intent: Literal["swap", "checkout", "limit_order", "dca", "unknown"] = "unknown"
    fromAsset: Optional[str] = None
    fromChain: Optional[str] = None
    toAsset: Optional[str] = None
    toChain: Optional[str] = None
    amount: Optional[float] = None
    settleAsset: Optional[str] = None  # checkout: what the payer should receive
    settleNetwork: Optional[str] = None
    settleAmount: Optional[float] = None
    settleAddress: Optional[str] = None
    conditionAsset: Optional[str] = None
    conditionOperator: Optional[Literal["gt", "lt"]] = None
    conditionValue: Optional[float] = None
    frequency: Optional[Literal["daily", "weekly", "monthly"]] = None
    dayOfWeek: Optional[int] = None
    dayOfMonth: Optional[int] = None
    confidence: int = 0
    validationErrors: List[str] = Field(default_factory=list)
    parsedMessage: str = ""
    requiresConfirmation: bool = True


# =============================================================================
# MONGODB DOCUMENT SCHEMAS
# =============================================================================

def user_document(
    user_id: str,
    tg_user_id: Optional[int] = None,
    tg_username: Optional[str] = None,
    wallet_address: Optional[str] = None,
) -> dict:
    """Create a user document for MongoDB."""
    return {
        "user_id": user_id,
        "tg_user_id": tg_user_id,
        "tg_username": tg_username,
        "wallet_address": wallet_address,
        "created_at": datetime.utcnow(),
    }


def limit_order_document(
    owner: str,
    from_asset: str,
    to_asset: str,
    amount: float,
    condition_operator: str,
    condition_value: float,
    settle_address: Optional[str],
    condition_asset: Optional[str] = None,
    from_chain: Optional[str] = None,
    to_chain: Optional[str] = None,
    wallet_address: Optional[str] = None,
) -> dict:
    """Create a limit order document for MongoDB."""
    now = datetime.utcnow()
    return {
        "_id": generate(size=12),
        "owner": owner,
        "wallet_address": wallet_address,
        "from_asset": from_asset.upper(),
        "from_chain": from_chain or infer_network(from_asset),
        "to_asset": to_asset.upper(),
        "to_chain": to_chain or infer_network(to_asset),
        "amount": amount,
        "condition_asset": (condition_asset or to_asset).upper(),
        "condition_operator": normalize_condition_operator(condition_operator),
        "condition_value": condition_value,
        "settle_address": settle_address,
        "status": LIMIT_PENDING,  # pending | triggered | executed | failed | cancelled
        "sideshift_order_id": None,
        "failure_reason": None,
        "trigger_price": None,
        "claimed_at": None,
        "created_at": now,
        "updated_at": now,
    }


def dca_schedule_document(
    owner: str,
    from_asset: str,
    to_asset: str,
    amount: float,
    frequency: str,
    next_execution: datetime,
    settle_address: Optional[str],
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
    from_chain: Optional[str] = None,
    to_chain: Optional[str] = None,
    smart: bool = False,
    wallet_address: Optional[str] = None,
) -> dict:
    """Create a DCA schedule document for MongoDB."""
    return {
        "_id": generate(size=12),
        "owner": owner,
        "wallet_address": wallet_address,
        "from_asset": from_asset.upper(),
        "from_chain": from_chain or infer_network(from_asset),
        "to_asset": to_asset.upper(),
        "to_chain": to_chain or infer_network(to_asset),
        "amount": amount,
        "frequency": frequency,
        "day_of_week": day_of_week,
        "day_of_month": day_of_month,
        "settle_address": settle_address,
        "smart": smart,
        "next_execution": next_execution,
        "last_executed": None,
        "execution_count": 0,
        "is_active": True,
        "consecutive_failures": 0,
        "retry_after": None,
        "locked_until": None,
        "last_error": None,
        "created_at": datetime.utcnow(),
    }


def swap_history_document(
    sideshift_order_id: str,
    user_id: str,
    from_asset: str,
    to_asset: str,
    from_amount: float,
    source: str = "manual",
    status: str = "pending",
    from_network: Optional[str] = None,
    to_network: Optional[str] = None,
    settle_amount: Optional[str] = None,
    deposit_address: Optional[str] = None,
    quote_id: Optional[str] = None,
    wallet_address: Optional[str] = None,
    volume_usd: Optional[float] = None,
    attempt_key: Optional[str] = None,
) -> dict:
    """Create a swap history document for MongoDB."""
    now = datetime.utcnow()
    return {
        "sideshift_order_id": sideshift_order_id,
        "attempt_key": attempt_key or sideshift_order_id,
        "user_id": user_id,
        "wallet_address": wallet_address,
        "quote_id": quote_id,
        "from_asset": from_asset.upper(),
        "from_network": from_network or infer_network(from_asset),
        "from_amount": from_amount,
        "to_asset": to_asset.upper(),
        "to_network": to_network or infer_network(to_asset),
        "settle_amount": settle_amount,
        "deposit_address": deposit_address,
        "volume_usd": volume_usd,
        "source": source,  # manual | dca | limit | stake
        "status": status,
        "tx_hash": None,
        "created_at": now,
        "updated_at": now,
    }


def watched_order_document(
    sideshift_order_id: str,
    owner: str,
    last_status: str = "waiting",
) -> dict:
    """Create a watched-order document polled by the order monitor."""
    now = datetime.utcnow()
    return {
        "sideshift_order_id": sideshift_order_id,
        "owner": owner,
        "last_status": last_status,
        "last_checked": now,
        "created_at": now,
    }


def price_alert_document(
    owner: str,
    coin: str,
    target_price: float,
    condition: str,
    name: Optional[str] = None,
    network: Optional[str] = None,
) -> dict:
    """Create a price alert document. Alerts fire once, then go inactive."""
    now = datetime.utcnow()
    coin = coin.upper()
    condition = normalize_condition_operator(condition)
    return {
        "_id": generate(size=12),
        "owner": owner,
        "coin": coin,
        "network": network or infer_network(coin),
        "name": name or f"{coin} {'above' if condition == 'gt' else 'below'} {target_price:g}",
        "target_price": float(target_price),
        "condition": condition,  # gt | lt
        "is_active": True,
        "triggered_price": None,
        "last_triggered_at": None,
        "created_at": now,
        "updated_at": now,
    }


def swap_history_response(entry: dict) -> dict:
    """Shape a swap history document for the HTTP API."""
    return {
        "sideshiftOrderId": entry.get("sideshift_order_id"),
        "status": entry.get("status"),
        "txHash": entry.get("tx_hash"),
        "fromAsset": entry.get("from_asset"),
        "toAsset": entry.get("to_asset"),
        "fromAmount": entry.get("from_amount"),
        "settleAmount": entry.get("settle_amount"),
        "source": entry.get("source"),
        "createdAt": entry.get("created_at"),
        "updatedAt": entry.get("updated_at"),
    }


def limit_order_response(order: dict) -> dict:
    """Shape a limit order document for the HTTP API."""
    return {
        "id": order.get("_id"),
        "owner": order.get("owner"),
        "fromAsset": order.get("from_asset"),
        "fromChain": order.get("from_chain"),
        "toAsset": order.get("to_asset"),
        "toChain": order.get("to_chain"),
        "amount": order.get("amount"),
        "conditionAsset": order.get("condition_asset"),
        "conditionOperator": order.get("condition_operator"),
        "conditionValue": order.get("condition_value"),
        "settleAddress": order.get("settle_address"),
        "status": order.get("status"),
        "sideshiftOrderId": order.get("sideshift_order_id"),
        "failureReason": order.get("failure_reason"),
        "createdAt": order.get("created_at"),
    }


def dca_schedule_response(schedule: dict) -> dict:
    """Shape a DCA schedule document for the HTTP API."""
    return {
        "id": schedule.get("_id"),
        "owner": schedule.get("owner"),
        "fromAsset": schedule.get("from_asset"),
        "fromChain": schedule.get("from_chain"),
        "toAsset": schedule.get("to_asset"),
        "toChain": schedule.get("to_chain"),
        "amount": schedule.get("amount"),
        "frequency": schedule.get("frequency"),
        "dayOfWeek": schedule.get("day_of_week"),
        "dayOfMonth": schedule.get("day_of_month"),
        "smart": schedule.get("smart"),
        "nextExecution": schedule.get("next_execution"),
        "lastExecuted": schedule.get("last_executed"),
        "executionCount": schedule.get("execution_count"),
        "isActive": schedule.get("is_active"),
    }


def price_alert_response(alert: dict, current_price: Optional[float] = None, last_updated: Optional[datetime] = None) -> dict:
    """Shape a price alert document for the HTTP API, with the latest known price."""
    return {
        "id": alert.get("_id"),
        "coin": alert.get("coin"),
        "network": alert.get("network"),
        "name": alert.get("name"),
        "targetPrice": alert.get("target_price"),
        "condition": alert.get("condition"),
        "isActive": alert.get("is_active"),
        "triggeredPrice": alert.get("triggered_price"),
        "lastTriggeredAt": alert.get("last_triggered_at"),
        "currentPrice": current_price,
        "lastUpdated": last_updated,
        "createdAt": alert.get("created_at"),
    }
