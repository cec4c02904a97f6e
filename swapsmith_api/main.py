import asyncio
import hmac
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Header, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import jwt

from . import price_service
from .config import config as app_config
from .database import DatabaseService
from .errors import NotFoundError, SwapSmithError, TransientProviderError, ValidationError
from .models import (
    CreateDcaRequest,
    CreateLimitOrderRequest,
    CreateOrderRequest,
    CreatePriceAlertRequest,
    CreateSwapRequest,
    SwapStatusUpdate,
    UpdatePriceAlertRequest,
    dca_schedule_response,
    infer_network,
    limit_order_response,
    price_alert_document,
    price_alert_response,
    swap_history_response,
)
from .notifier import Notifier
from .order_monitor import OrderMonitor
from .orders import cancel_limit_order, place_dca_schedule, place_limit_order, place_swap_order
from .reputation import calculate_reputation_metrics
from .scheduler import OrderScheduler, create_scheduler
from .sideshift_client import SideShiftClient
from .telegram_bot import TelegramBot

# Initialize logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize database service
db_service = DatabaseService(app_config.MONGO_URL, app_config.MONGO_DB, app_config.MONGO_TIMEOUT_MS)

# Created in lifespan
sideshift_client: Optional[SideShiftClient] = None
notifier: Optional[Notifier] = None
telegram_bot: Optional[TelegramBot] = None
scheduler: Optional[OrderScheduler] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    global sideshift_client, notifier, telegram_bot, scheduler

    # Startup
    logger.info("Starting up...")

    # Setup database indexes
    await db_service.setup_indexes()

    sideshift_client = SideShiftClient()
    notifier = Notifier(db_service)

    # Start Telegram bot in background
    if app_config.TELEGRAM_BOT_TOKEN:
        telegram_bot = TelegramBot(
            db_service,
            sideshift_client,
            order_monitor=OrderMonitor(db_service, sideshift_client, notifier),
        )
        notifier.set_telegram_bot(telegram_bot)
        asyncio.create_task(telegram_bot.start())
        logger.info("Telegram bot started")
    else:
        logger.warning("TELEGRAM_BOT_TOKEN not set, notifications disabled")

    # Start the order scheduler (limit orders, DCA, watched orders)
    scheduler = create_scheduler(db_service, sideshift_client, notifier)
    await scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down...")
    if scheduler:
        await scheduler.stop()
    if telegram_bot:
        await telegram_bot.stop()
    if sideshift_client:
        await sideshift_client.close()


app = FastAPI(lifespan=lifespan)


# Health check endpoint for Dokku
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "scheduler_running": bool(scheduler and scheduler.running),
        "last_tick_at": scheduler.last_tick_at if scheduler else None,
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "https://web.telegram.org",
        "http://web.telegram.org",
    ],
    allow_credentials=True,
    allow_methods=["POST", "GET", "PATCH", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(SwapSmithError)
async def swapsmith_error_handler(request: Request, exc: SwapSmithError):
    if isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, TransientProviderError):
        status_code = 502
    else:
        status_code = 500
    logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_db() -> DatabaseService:
    return db_service


def get_sideshift() -> SideShiftClient:
    global sideshift_client
    if sideshift_client is None:
        sideshift_client = SideShiftClient()
    return sideshift_client


def get_order_monitor(
    db: DatabaseService = Depends(get_db),
    sideshift: SideShiftClient = Depends(get_sideshift),
) -> OrderMonitor:
    return OrderMonitor(db, sideshift, notifier)


async def check_bearer_token(authorization: str = Header(...)):
    # get bearer token from header
    try:
        token = authorization.split("Bearer ")[1]
        return jwt.decode(token, app_config.AUTH_RSA, algorithms=["ES256"], issuer=app_config.AUTH_ISSUER, audience=app_config.AUTH_AUDIENCE)
    except (IndexError, jwt.PyJWTError) as e:
        logger.error(f"Error decoding token: {str(e)}")
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
        )


async def check_status_secret(x_swap_status_secret: Optional[str] = Header(None)):
    """Shared secret for the swap status webhook, enforced when configured."""
    expected = app_config.SWAP_STATUS_SECRET
    if expected and not hmac.compare_digest(x_swap_status_secret or "", expected):
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
        )


# =============================================================================
# SWAPS
# =============================================================================

@app.post("/api/create-swap")
async def create_swap(
    request: CreateSwapRequest,
    sideshift: SideShiftClient = Depends(get_sideshift),
    x_forwarded_for: Optional[str] = Header(None),
):
    """Fixed-rate quote for a swap; the order itself is placed via /api/create-order."""
    from_chain = request.fromChain or infer_network(request.fromAsset)
    to_chain = request.toChain or infer_network(request.toAsset)
    user_ip = x_forwarded_for.split(",")[0].strip() if x_forwarded_for else None

    quote = await sideshift.create_quote(
        request.fromAsset, from_chain, request.toAsset, to_chain, request.amount, user_ip=user_ip
    )
    return {"success": True, "data": quote.model_dump()}


@app.post("/api/create-order")
async def create_order(
    request: CreateOrderRequest,
    db: DatabaseService = Depends(get_db),
    sideshift: SideShiftClient = Depends(get_sideshift),
    token=Depends(check_bearer_token),
    x_forwarded_for: Optional[str] = Header(None),
):
    user_ip = x_forwarded_for.split(",")[0].strip() if x_forwarded_for else None
    order = await place_swap_order(
        db,
        sideshift,
        owner=token.get("sub"),
        quote_id=request.quoteId,
        settle_address=request.settleAddress,
        refund_address=request.refundAddress,
        wallet_address=request.walletAddress,
        user_ip=user_ip,
    )
    return {"success": True, "data": order.model_dump()}


@app.post("/api/swap-status")
async def update_swap_status(
    update: SwapStatusUpdate,
    db: DatabaseService = Depends(get_db),
    _secret=Depends(check_status_secret),
):
    """Status webhook. Forward-only unless force is set."""
    entry = await db.update_swap_history_status(
        update.sideshiftOrderId, update.status, tx_hash=update.txHash, force=update.force
    )
    if not entry:
        raise HTTPException(status_code=404, detail="Swap not found")

    return {
        "success": True,
        "message": "Swap status updated successfully",
        "sideshiftOrderId": entry["sideshift_order_id"],
        "status": entry["status"],
    }


@app.get("/api/swap-status")
async def get_swap_status(
    orderId: str,
    refresh: bool = False,
    db: DatabaseService = Depends(get_db),
    order_monitor: OrderMonitor = Depends(get_order_monitor),
):
    if refresh:
        entry = await order_monitor.reconcile(orderId)
    else:
        entry = await db.get_swap_history_entry(orderId)
    if not entry:
        raise HTTPException(status_code=404, detail="Swap not found")
    return {"success": True, "data": swap_history_response(entry)}


@app.get("/api/reputation")
async def get_reputation(
    userId: Optional[str] = None,
    walletAddress: Optional[str] = None,
    db: DatabaseService = Depends(get_db),
):
    if not userId and not walletAddress:
        raise HTTPException(status_code=400, detail="userId or walletAddress is required")
    entries = await db.list_swap_history(user_id=userId, wallet_address=walletAddress)
    return {"success": True, "data": calculate_reputation_metrics(entries)}


# =============================================================================
# LIMIT ORDERS & DCA
# =============================================================================

@app.post("/api/create-limit-order")
async def create_limit_order(
    request: CreateLimitOrderRequest,
    db: DatabaseService = Depends(get_db),
    token=Depends(check_bearer_token),
):
    order = await place_limit_order(
        db,
        owner=token.get("sub"),
        from_asset=request.fromAsset,
        to_asset=request.toAsset,
        amount=request.amount,
        condition_operator=request.conditionOperator,
        condition_value=request.conditionValue,
        settle_address=request.settleAddress,
        condition_asset=request.conditionAsset,
        from_chain=request.fromChain,
        to_chain=request.toChain,
        wallet_address=request.walletAddress,
    )
    return {"success": True, "data": limit_order_response(order)}


@app.post("/api/limit-orders/{order_id}/cancel")
async def cancel_limit_order_route(
    order_id: str,
    db: DatabaseService = Depends(get_db),
    token=Depends(check_bearer_token),
):
    owner = token.get("sub")
    if await cancel_limit_order(db, order_id, owner):
        return {"success": True, "id": order_id, "status": "cancelled"}

    order = await db.get_limit_order(order_id)
    if not order or order.get("owner") != owner:
        raise HTTPException(status_code=404, detail="Limit order not found")
    raise HTTPException(status_code=409, detail=f"Limit order is {order['status']} and cannot be cancelled")


@app.post("/api/create-dca")
async def create_dca(
    request: CreateDcaRequest,
    db: DatabaseService = Depends(get_db),
    token=Depends(check_bearer_token),
):
    schedule = await place_dca_schedule(
        db,
        owner=token.get("sub"),
        from_asset=request.fromAsset,
        to_asset=request.toAsset,
        amount=request.amount,
        frequency=request.frequency,
        settle_address=request.settleAddress,
        day_of_week=request.dayOfWeek,
        day_of_month=request.dayOfMonth,
        from_chain=request.fromChain,
        to_chain=request.toChain,
        smart=request.smart,
        wallet_address=request.walletAddress,
    )
    return {"success": True, "data": dca_schedule_response(schedule)}


@app.post("/api/dca/{schedule_id}/cancel")
async def cancel_dca(
    schedule_id: str,
    db: DatabaseService = Depends(get_db),
    token=Depends(check_bearer_token),
):
    if not await db.cancel_dca_schedule(schedule_id, token.get("sub")):
        raise HTTPException(status_code=404, detail="Active DCA schedule not found")
    return {"success": True, "id": schedule_id, "isActive": False}


# =============================================================================
# PRICE ALERTS
# =============================================================================

async def _with_current_prices(alerts: List[dict]) -> List[dict]:
    snapshots = await price_service.get_price_snapshots({alert["coin"] for alert in alerts}) if alerts else {}
    shaped = []
    for alert in alerts:
        snapshot = snapshots.get(alert["coin"])
        shaped.append(price_alert_response(
            alert,
            current_price=snapshot.price if snapshot else None,
            last_updated=snapshot.fetched_at if snapshot else None,
        ))
    return shaped


@app.get("/api/price-alerts")
async def list_price_alerts(
    active: bool = False,
    db: DatabaseService = Depends(get_db),
    token=Depends(check_bearer_token),
):
    alerts = await db.list_price_alerts_by_owner(token.get("sub"), active_only=active)
    return {"success": True, "data": await _with_current_prices(alerts)}


@app.post("/api/price-alerts", status_code=201)
async def create_price_alert(
    request: CreatePriceAlertRequest,
    db: DatabaseService = Depends(get_db),
    token=Depends(check_bearer_token),
):
    alert = await db.create_price_alert(price_alert_document(
        owner=token.get("sub"),
        coin=request.coin,
        target_price=request.targetPrice,
        condition=request.condition,
        name=request.name,
        network=request.network,
    ))
    shaped = await _with_current_prices([alert])
    return {"success": True, "data": shaped[0]}


@app.patch("/api/price-alerts/{alert_id}")
async def update_price_alert(
    alert_id: str,
    request: UpdatePriceAlertRequest,
    db: DatabaseService = Depends(get_db),
    token=Depends(check_bearer_token),
):
    updates = {}
    if request.targetPrice is not None:
        updates["target_price"] = request.targetPrice
    if request.condition is not None:
        updates["condition"] = request.condition
    if request.isActive is not None:
        updates["is_active"] = request.isActive
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")

    alert = await db.update_price_alert(alert_id, token.get("sub"), updates)
    if not alert:
        raise HTTPException(status_code=404, detail="Price alert not found")
    return {"success": True, "data": price_alert_response(alert)}


@app.delete("/api/price-alerts/{alert_id}")
async def delete_price_alert(
    alert_id: str,
    db: DatabaseService = Depends(get_db),
    token=Depends(check_bearer_token),
):
    if not await db.delete_price_alert(alert_id, token.get("sub")):
        raise HTTPException(status_code=404, detail="Price alert not found")
    return {"success": True, "message": "Price alert deleted"}


logger.info("Routes registered:")
for route in app.routes:
    route_info = f"  - path={getattr(route, 'path', '?')}, type={type(route).__name__}"
    if hasattr(route, 'methods'):
        route_info += f", methods={route.methods}"
    logger.info(route_info)
