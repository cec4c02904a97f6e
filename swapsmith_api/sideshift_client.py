"""
SideShift v2 API client: pairs, fixed-rate quotes, shifts and checkouts.

Every failure is raised as one of the typed errors in swapsmith_api.errors so
callers can decide between retrying and failing terminally.
"""
import logging
from typing import List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from .config import config as app_config
from .errors import ProviderResponseError, TransientProviderError, ValidationError, error_for_status
from .models import Checkout, Order, OrderStatus, Quote

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

CHECKOUT_URL = "https://pay.sideshift.ai/checkout"


class SideShiftClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        affiliate_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or app_config.SIDESHIFT_API_KEY
        self.affiliate_id = affiliate_id if affiliate_id is not None else app_config.SIDESHIFT_AFFILIATE_ID
        self.base_url = (base_url or app_config.SIDESHIFT_API_URL).rstrip("/")
        self.timeout = timeout or app_config.HTTP_TIMEOUT_SECONDS
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self):
        self._http()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self, user_ip: Optional[str]) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "x-user-ip": user_ip or app_config.SIDESHIFT_USER_IP,
        }
        if self.api_key:
            headers["x-sideshift-secret"] = self.api_key
        return headers

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"].get("message") or f"HTTP {response.status_code}"
        return f"HTTP {response.status_code}"

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        user_ip: Optional[str] = None,
    ):
        url = f"{self.base_url}{path}"
        try:
            response = await self._http().request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(user_ip),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"SideShift {method} {path} timed out")
            raise TransientProviderError(f"SideShift request timed out: {path}") from e
        except httpx.TransportError as e:
            logger.warning(f"SideShift {method} {path} transport error: {e}")
            raise TransientProviderError(f"SideShift unreachable: {e}") from e

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.warning(f"SideShift {method} {path} failed: {response.status_code} {message}")
            raise error_for_status(response.status_code, message)

        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"SideShift {method} {path} returned a body that is not JSON")
            raise ProviderResponseError(f"Unreadable SideShift response: {path}", response.status_code) from e
        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ValidationError(message or "SideShift rejected the request")
        return data

    @staticmethod
    def _parse(model: Type[M], data, path: str) -> M:
        try:
            return model.model_validate(data)
        except SchemaError as e:
            logger.warning(f"SideShift {path} response did not match {model.__name__}: {e}")
            raise ProviderResponseError(f"Unexpected SideShift response: {path}") from e

    # =========================================================================
    # PAIRS & QUOTES
    # =========================================================================

    async def get_pairs(self, from_asset: Optional[str] = None, to_asset: Optional[str] = None) -> List[dict]:
        """List tradable pairs, optionally filtered by deposit/settle coin."""
        pairs = await self._request("GET", "/pairs")
        if from_asset:
            pairs = [p for p in pairs if p.get("depositCoin", "").upper() == from_asset.upper()]
        if to_asset:
            pairs = [p for p in pairs if p.get("settleCoin", "").upper() == to_asset.upper()]
        return pairs

    async def create_quote(
        self,
        from_asset: str,
        from_chain: str,
        to_asset: str,
        to_chain: str,
        amount: float,
        user_ip: Optional[str] = None,
    ) -> Quote:
        """Request a fixed-rate quote for depositing `amount` of from_asset."""
        data = await self._request(
            "POST",
            "/quotes",
            json={
                "depositCoin": from_asset,
                "depositNetwork": from_chain,
                "settleCoin": to_asset,
                "settleNetwork": to_chain,
                "depositAmount": str(amount),
                "affiliateId": self.affiliate_id,
            },
            user_ip=user_ip,
        )
        quote = self._parse(Quote, data, "/quotes")
        logger.info(f"SideShift quote {quote.id}: {amount} {from_asset} -> {quote.settleAmount} {to_asset}")
        return quote

    # =========================================================================
    # ORDERS (SHIFTS)
    # =========================================================================

    async def create_order(
        self,
        quote_id: str,
        settle_address: str,
        refund_address: Optional[str] = None,
        user_ip: Optional[str] = None,
    ) -> Order:
        """Turn a quote into a fixed shift. The user then pays into depositAddress."""
        body = {
            "quoteId": quote_id,
            "settleAddress": settle_address,
            "affiliateId": self.affiliate_id,
        }
        if refund_address:
            body["refundAddress"] = refund_address
        data = await self._request("POST", "/shifts/fixed", json=body, user_ip=user_ip)
        order = self._parse(Order, data, "/shifts/fixed")
        logger.info(f"SideShift order {order.id} created from quote {quote_id}")
        return order

    async def get_order_status(self, order_id: str) -> OrderStatus:
        data = await self._request("GET", f"/shifts/{order_id}")
        return self._parse(OrderStatus, data, f"/shifts/{order_id}")

    # =========================================================================
    # CHECKOUT (SideShift Pay)
    # =========================================================================

    async def create_checkout(
        self,
        settle_coin: str,
        settle_network: str,
        settle_amount: float,
        settle_address: str,
        user_ip: Optional[str] = None,
        settle_memo: Optional[str] = None,
    ) -> Checkout:
        """Create a payment link that settles `settle_amount` to settle_address."""
        return_url = app_config.MINI_APP_URL
        body = {
            "settleCoin": settle_coin,
            "settleNetwork": settle_network,
            "settleAmount": str(settle_amount),
            "settleAddress": settle_address,
            "affiliateId": self.affiliate_id,
            "successUrl": f"{return_url}?status=success",
            "cancelUrl": f"{return_url}?status=cancel",
        }
        if settle_memo:
            body["settleMemo"] = settle_memo
        data = await self._request("POST", "/checkout", json=body, user_ip=user_ip)
        if isinstance(data, dict):
            data.setdefault("url", f"{CHECKOUT_URL}/{data.get('id')}")
        return self._parse(Checkout, data, "/checkout")
