"""
OpenSea Wyvern v1 orderbook client.

Only the read side is modeled: fetching active sell orders for a token and
turning them into Order values the resolver can validate.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import OrderbookConfig, get_config
from .exceptions import OrderbookUnavailable
from .orders import Order, OrderSide, TokenStandard, normalize_address

logger = logging.getLogger(__name__)

ORDERBOOK_VERSION = 1


class Network(str, Enum):
    """Orderbook deployments."""
    MAINNET = "mainnet"
    RINKEBY = "rinkeby"

    @property
    def url(self) -> str:
        return {
            Network.MAINNET: "https://api.opensea.io",
            Network.RINKEBY: "https://rinkeby-api.opensea.io",
        }[self]

    @property
    def orderbook(self) -> str:
        return f"{self.url}/wyvern/v{ORDERBOOK_VERSION}"


def _dec_to_int(value: Any) -> int:
    """Decimal strings like "40000000000000000.0000" to int."""
    if isinstance(value, int):
        return value
    try:
        return int(Decimal(str(value)))
    except InvalidOperation as e:
        raise ValueError(f"not a decimal number: {value!r}") from e


def _hex_to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if value is None:
        return b""
    text = str(value)
    return bytes.fromhex(text[2:] if text.startswith("0x") else text)


class ApiAccount(BaseModel):
    """Maker, taker or fee recipient as returned by the API."""
    address: str


class ApiAssetId(BaseModel):
    id: int
    address: str

    @field_validator("id", mode="before")
    @classmethod
    def parse_id(cls, v: Any) -> int:
        return _dec_to_int(v)


class ApiOrderMetadata(BaseModel):
    asset: ApiAssetId
    schema_name: str = Field(alias="schema")


class ApiOrder(BaseModel):
    """One order from /wyvern/v1/orders."""
    id: Optional[int] = None
    order_hash: bytes = b""

    exchange: str
    maker: ApiAccount
    taker: ApiAccount
    fee_recipient: ApiAccount
    target: str
    static_target: str
    payment_token: str

    maker_relayer_fee: int
    taker_relayer_fee: int
    maker_protocol_fee: int
    taker_protocol_fee: int
    base_price: int
    current_price: int
    extra: int
    salt: int
    quantity: int = 1
    listing_time: int
    expiration_time: int

    fee_method: int
    side: int
    sale_kind: int
    how_to_call: int

    calldata: bytes
    replacement_pattern: bytes
    static_extradata: bytes = b""

    v: int
    r: bytes
    s: bytes

    approved_on_chain: bool = False
    cancelled: bool = False
    finalized: bool = False
    marked_invalid: bool = False

    metadata: ApiOrderMetadata

    @field_validator(
        "maker_relayer_fee", "taker_relayer_fee", "maker_protocol_fee",
        "taker_protocol_fee", "base_price", "current_price", "extra", "salt",
        "quantity", mode="before",
    )
    @classmethod
    def parse_decimal(cls, v: Any) -> int:
        return _dec_to_int(v)

    @field_validator(
        "order_hash", "calldata", "replacement_pattern", "static_extradata", "r", "s",
        mode="before",
    )
    @classmethod
    def parse_hex(cls, v: Any) -> bytes:
        return _hex_to_bytes(v)

    @property
    def is_active(self) -> bool:
        return not (self.cancelled or self.finalized or self.marked_invalid)

    @property
    def unit_price(self) -> Fraction:
        """Price per unit; ERC1155 listings can bundle several units."""
        if self.standard == TokenStandard.ERC1155 and self.quantity > 0:
            return Fraction(self.current_price, self.quantity)
        return Fraction(self.current_price)

    @property
    def standard(self) -> Optional[TokenStandard]:
        try:
            return TokenStandard(self.metadata.schema_name.upper())
        except ValueError:
            return None

    def to_order(self) -> Order:
        standard = self.standard
        if standard is None:
            raise ValueError(f"Unsupported asset schema {self.metadata.schema_name}")
        return Order(
            exchange=normalize_address(self.exchange),
            maker=normalize_address(self.maker.address),
            taker=normalize_address(self.taker.address),
            fee_recipient=normalize_address(self.fee_recipient.address),
            target=normalize_address(self.target),
            static_target=normalize_address(self.static_target),
            payment_token=normalize_address(self.payment_token),
            maker_relayer_fee=self.maker_relayer_fee,
            taker_relayer_fee=self.taker_relayer_fee,
            maker_protocol_fee=self.maker_protocol_fee,
            taker_protocol_fee=self.taker_protocol_fee,
            base_price=self.base_price,
            current_price=self.current_price,
            extra=self.extra,
            listing_time=self.listing_time,
            expiration_time=self.expiration_time,
            salt=self.salt,
            fee_method=self.fee_method,
            side=self.side,
            sale_kind=self.sale_kind,
            how_to_call=self.how_to_call,
            calldata=self.calldata,
            replacement_pattern=self.replacement_pattern,
            static_extradata=self.static_extradata,
            v=self.v,
            r=self.r,
            s=self.s,
            asset_contract=normalize_address(self.metadata.asset.address),
            token_id=self.metadata.asset.id,
            standard=standard,
            quantity=self.quantity,
            order_hash=self.order_hash,
        )


class OrdersResponse(BaseModel):
    count: int = 0
    orders: List[ApiOrder] = Field(default_factory=list)


@dataclass
class OrderQuery:
    """Query parameters for /orders."""
    contract: str
    token_id: int
    side: OrderSide = OrderSide.SELL
    limit: int = 20

    def to_params(self) -> Dict[str, Any]:
        return {
            "side": int(self.side),
            "token_id": str(self.token_id),
            "asset_contract_address": self.contract.lower(),
            "limit": self.limit,
        }


class OpenSeaOrderbook:
    """
    Read-only client for the OpenSea orderbook.

    Example:
        orderbook = OpenSeaOrderbook(Network.MAINNET, api_key=key)
        orders = await orderbook.get_cheapest_orders(contract, 468, n=10)
    """

    def __init__(
        self,
        network: Network = Network.MAINNET,
        api_key: Optional[str] = None,
        config: Optional[OrderbookConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._network = Network(network)
        self._config = config or get_config().orderbook
        self._api_key = api_key or self._config.api_key
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def network(self) -> Network:
        return self._network

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["X-API-KEY"] = self._api_key
            self._client = httpx.AsyncClient(
                base_url=self._network.orderbook,
                headers=headers,
                timeout=self._config.http_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def get_orders(self, query: OrderQuery) -> List[ApiOrder]:
        """Fetch raw orders for a token."""
        client = await self._get_client()
        try:
            response = await client.get("/orders", params=query.to_params())
            response.raise_for_status()
            parsed = OrdersResponse.model_validate(response.json())
        except httpx.HTTPError as e:
            raise OrderbookUnavailable(
                f"Orderbook request failed: {e}",
                contract=query.contract,
                token_id=query.token_id,
            ) from e
        except (ValidationError, ValueError) as e:
            raise OrderbookUnavailable(
                f"Unreadable orderbook response: {e}",
                contract=query.contract,
                token_id=query.token_id,
            ) from e

        logger.debug(
            f"Fetched {len(parsed.orders)} orders for {query.contract} #{query.token_id}"
        )
        return parsed.orders

    async def get_cheapest_orders(
        self,
        contract: str,
        token_id: int,
        n: int = 1,
    ) -> List[ApiOrder]:
        """The n cheapest active sell orders for a token, cheapest per unit first."""
        query = OrderQuery(contract=contract, token_id=token_id, limit=self._config.page_limit)
        orders = [o for o in await self.get_orders(query) if o.is_active]
        orders.sort(key=lambda o: o.unit_price)
        return orders[:n]

    async def resolve(
        self,
        contract: str,
        token_id: int,
        standard: TokenStandard,
    ) -> Optional[Order]:
        """Cheapest active sell order for a token, or None."""
        for api_order in await self.get_cheapest_orders(contract, token_id, n=self._config.page_limit):
            if api_order.standard is None:
                logger.debug(f"Skipping order with schema {api_order.metadata.schema_name}")
                continue
            return api_order.to_order()
        return None

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
