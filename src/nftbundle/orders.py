"""
Order model and order resolution.

An Order is an immutable snapshot of one Wyvern sell listing, fetched fresh
for every purchase run. A PurchaseRequest is the buyer's intent: one NFT
contract, one token standard and an ordered list of (token id, quantity)
items. The OrderResolver turns each item into a validated Order, failing the
item with a ResolutionError before any transaction is built.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional, Protocol, Sequence, Tuple

from web3 import Web3

from .config import ResolutionConfig, get_config
from .exceptions import (
    BatchResolutionError,
    InsufficientQuantity,
    InvalidQuantity,
    OrderNotFound,
    ResolutionError,
    UnsupportedOrderKind,
)

logger = logging.getLogger(__name__)


class TokenStandard(str, Enum):
    """Token standards a purchase can target."""
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"


class OrderSide(IntEnum):
    """Wyvern order side."""
    BUY = 0
    SELL = 1


class SaleKind(IntEnum):
    """Wyvern sale kind."""
    FIXED_PRICE = 0
    DUTCH_AUCTION = 1


class FeeMethod(IntEnum):
    """Wyvern fee method."""
    PROTOCOL_FEE = 0
    SPLIT_FEE = 1


class HowToCall(IntEnum):
    """Wyvern proxy call type."""
    CALL = 0
    DELEGATE_CALL = 1


ZERO_BYTES32 = b"\x00" * 32


def normalize_address(address: str) -> str:
    """Return the checksummed form of an address."""
    return Web3.to_checksum_address(address)


@dataclass(frozen=True)
class Order:
    """
    One marketplace listing, with every argument the exchange contract needs.

    Field names follow the Wyvern order struct. `current_price` is the total
    price for `quantity` units at the time the order was fetched.
    """
    # Addresses involved
    exchange: str
    maker: str
    taker: str
    fee_recipient: str
    target: str
    static_target: str
    payment_token: str

    # Fees (basis points)
    maker_relayer_fee: int
    taker_relayer_fee: int
    maker_protocol_fee: int
    taker_protocol_fee: int

    # Price and timing
    base_price: int
    current_price: int
    extra: int
    listing_time: int
    expiration_time: int
    salt: int

    fee_method: int
    side: int
    sale_kind: int
    how_to_call: int

    calldata: bytes
    replacement_pattern: bytes
    static_extradata: bytes

    # Maker signature
    v: int
    r: bytes
    s: bytes

    # Asset being sold
    asset_contract: str
    token_id: int
    standard: TokenStandard
    quantity: int = 1
    order_hash: bytes = ZERO_BYTES32

    @property
    def seller(self) -> str:
        return self.maker

    @property
    def is_native_currency(self) -> bool:
        """Whether the order is priced in the chain's native currency."""
        return int(self.payment_token, 16) == 0

    @property
    def is_open_to_any_taker(self) -> bool:
        return int(self.taker, 16) == 0

    def price_for(self, quantity: int) -> int:
        """
        Total price for buying `quantity` units of this order.

        Partial fills round up so the exchange never sees an underpayment.
        """
        if quantity == self.quantity:
            return self.current_price
        return -(-self.current_price * quantity // self.quantity)


@dataclass(frozen=True)
class PurchaseItem:
    """One (token id, quantity) entry of a purchase request."""
    token_id: int
    quantity: int = 1


@dataclass(frozen=True)
class PurchaseRequest:
    """
    The buyer's intent for one purchase run.

    One contract and one token standard per request. ERC721 items always
    carry quantity 1.
    """
    standard: TokenStandard
    contract: str
    items: Tuple[PurchaseItem, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        standard = TokenStandard(self.standard)
        object.__setattr__(self, "standard", standard)
        object.__setattr__(self, "contract", normalize_address(self.contract))

        items = tuple(
            item if isinstance(item, PurchaseItem) else PurchaseItem(*item)
            for item in self.items
        )
        if not items:
            raise ValueError("A purchase request needs at least one item")

        seen = set()
        for item in items:
            if item.token_id in seen:
                raise ValueError(f"Token id {item.token_id} requested more than once")
            seen.add(item.token_id)
            if item.quantity < 1:
                raise InvalidQuantity(item.quantity, standard.value, "quantity must be at least 1")
            if standard == TokenStandard.ERC721 and item.quantity != 1:
                raise InvalidQuantity(item.quantity, standard.value, "ERC721 tokens are unique")

        object.__setattr__(self, "items", items)

    @classmethod
    def build(
        cls,
        standard: TokenStandard,
        contract: str,
        token_ids: Sequence[int],
        quantities: Optional[Sequence[int]] = None,
    ) -> "PurchaseRequest":
        """Build a request from parallel id / quantity lists."""
        if quantities is None:
            quantities = [1] * len(token_ids)
        if len(quantities) != len(token_ids):
            raise ValueError("token_ids and quantities must have the same length")
        items = tuple(PurchaseItem(int(t), int(q)) for t, q in zip(token_ids, quantities))
        return cls(standard=standard, contract=contract, items=items)

    @property
    def token_ids(self) -> List[int]:
        return [item.token_id for item in self.items]

    @property
    def quantities(self) -> List[int]:
        return [item.quantity for item in self.items]


class OrderbookClient(Protocol):
    """What the resolver needs from a marketplace orderbook."""

    async def resolve(
        self,
        contract: str,
        token_id: int,
        standard: TokenStandard,
    ) -> Optional[Order]:
        ...


class OrderResolver:
    """
    Resolves purchase items into validated sell orders.

    Lookups for independent items are read-only, so resolve_all fans them out
    concurrently and then restores request order.
    """

    def __init__(
        self,
        orderbook: OrderbookClient,
        config: Optional[ResolutionConfig] = None,
    ):
        self._orderbook = orderbook
        self._config = config or get_config().resolution

    async def resolve(
        self,
        contract: str,
        token_id: int,
        standard: TokenStandard,
        quantity: int = 1,
        buyer: Optional[str] = None,
    ) -> Order:
        """
        Resolve one item into an Order.

        Raises:
            OrderNotFound: No active sell order exists
            UnsupportedOrderKind: The order cannot be filled by this tool
            InsufficientQuantity: The order offers fewer units than requested
        """
        standard = TokenStandard(standard)
        order = await self._orderbook.resolve(contract, token_id, standard)
        if order is None:
            raise OrderNotFound(contract, token_id)

        self.validate(order, standard, quantity, buyer)
        logger.debug(
            f"Resolved {contract} #{token_id}: price={order.current_price} "
            f"available={order.quantity}"
        )
        return order

    @staticmethod
    def validate(
        order: Order,
        standard: TokenStandard,
        quantity: int,
        buyer: Optional[str] = None,
    ) -> None:
        """Check that an order can be filled for the requested quantity."""
        contract, token_id = order.asset_contract, order.token_id

        def unsupported(reason: str) -> UnsupportedOrderKind:
            return UnsupportedOrderKind(reason, contract=contract, token_id=token_id)

        if order.standard != standard:
            raise unsupported(
                f"order is for a {order.standard.value} token, request is {standard.value}"
            )
        if order.side != OrderSide.SELL:
            raise unsupported("only sell orders can be filled")
        if order.sale_kind not in (SaleKind.FIXED_PRICE, SaleKind.DUTCH_AUCTION):
            raise unsupported(f"sale kind {order.sale_kind}")
        if order.fee_method not in (FeeMethod.PROTOCOL_FEE, FeeMethod.SPLIT_FEE):
            raise unsupported(f"fee method {order.fee_method}")
        if order.how_to_call not in (HowToCall.CALL, HowToCall.DELEGATE_CALL):
            raise unsupported(f"call type {order.how_to_call}")
        if not order.is_native_currency:
            raise unsupported(f"payment token {order.payment_token} is not the native currency")
        if not order.is_open_to_any_taker and (
            buyer is None or order.taker.lower() != buyer.lower()
        ):
            raise unsupported(f"order is reserved for taker {order.taker}")

        if order.quantity < 1:
            raise InsufficientQuantity(quantity, order.quantity, contract, token_id)
        if quantity > order.quantity:
            raise InsufficientQuantity(quantity, order.quantity, contract, token_id)

    async def resolve_all(
        self,
        request: PurchaseRequest,
        buyer: Optional[str] = None,
    ) -> List[Order]:
        """
        Resolve every item of a request, in request order.

        Raises:
            BatchResolutionError: listing every item that failed
        """
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrent_lookups))

        async def lookup(item: PurchaseItem) -> Order:
            async with semaphore:
                return await self.resolve(
                    request.contract,
                    item.token_id,
                    request.standard,
                    item.quantity,
                    buyer,
                )

        results = await asyncio.gather(
            *(lookup(item) for item in request.items),
            return_exceptions=True,
        )

        orders: List[Order] = []
        failures: List[Tuple[int, ResolutionError]] = []
        for index, result in enumerate(results):
            if isinstance(result, ResolutionError):
                failures.append((index, result))
            elif isinstance(result, BaseException):
                raise result
            else:
                orders.append(result)

        if failures:
            for index, error in failures:
                logger.error(f"Item {index} failed to resolve: {error.message}")
            raise BatchResolutionError(failures)

        return orders
