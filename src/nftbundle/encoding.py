"""
Settlement encoding for Wyvern (OpenSea v1) sell orders.

Filling a Wyvern sell order means calling `atomicMatch_` on the exchange with
the seller's signed order and a buy-side counter order that mirrors it: same
fees, same target, same static call, and transfer calldata whose `from` word
is left blank and filled in from the sell side through the replacement
pattern.

Everything here is a pure function of its inputs. No chain state is read, so
the same (Order, quantity) always produces byte-identical call data.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from eth_abi import encode
from web3 import Web3

from .config import NATIVE_CURRENCY, GasConfig, get_config
from .exceptions import (
    CurrencyMismatch,
    InsufficientQuantity,
    InvalidQuantity,
    UnsupportedStandard,
)
from .orders import (
    ZERO_BYTES32,
    Order,
    OrderSide,
    TokenStandard,
    normalize_address,
)

logger = logging.getLogger(__name__)


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# OpenSea's legacy fee recipient, used on the buy side when the seller left it empty
OPENSEA_FEE_RECIPIENT = normalize_address("0x5b3256965e7c3cf26e11fcaf296dfc8807c01073")

ATOMIC_MATCH_SIGNATURE = (
    "atomicMatch_(address[14],uint256[18],uint8[8],bytes,bytes,bytes,bytes,"
    "bytes,bytes,uint8[2],bytes32[5])"
)
ATOMIC_MATCH_TYPES = [
    "address[14]",
    "uint256[18]",
    "uint8[8]",
    "bytes",
    "bytes",
    "bytes",
    "bytes",
    "bytes",
    "bytes",
    "uint8[2]",
    "bytes32[5]",
]
ATOMIC_MATCH_SELECTOR = Web3.keccak(text=ATOMIC_MATCH_SIGNATURE)[:4]

ERC721_TRANSFER_SELECTOR = Web3.keccak(text="transferFrom(address,address,uint256)")[:4]
ERC1155_TRANSFER_SELECTOR = Web3.keccak(
    text="safeTransferFrom(address,address,uint256,uint256,bytes)"
)[:4]


@dataclass(frozen=True)
class WyvernOrder:
    """The exact order arguments `atomicMatch_` takes for one side."""
    exchange: str
    maker: str
    taker: str
    fee_recipient: str
    target: str
    static_target: str
    payment_token: str

    maker_relayer_fee: int
    taker_relayer_fee: int
    maker_protocol_fee: int
    taker_protocol_fee: int

    base_price: int
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

    v: int
    r: bytes
    s: bytes

    @classmethod
    def from_order(cls, order: Order) -> "WyvernOrder":
        return cls(
            exchange=order.exchange,
            maker=order.maker,
            taker=order.taker,
            fee_recipient=order.fee_recipient,
            target=order.target,
            static_target=order.static_target,
            payment_token=order.payment_token,
            maker_relayer_fee=order.maker_relayer_fee,
            taker_relayer_fee=order.taker_relayer_fee,
            maker_protocol_fee=order.maker_protocol_fee,
            taker_protocol_fee=order.taker_protocol_fee,
            base_price=order.base_price,
            extra=order.extra,
            listing_time=order.listing_time,
            expiration_time=order.expiration_time,
            salt=order.salt,
            fee_method=order.fee_method,
            side=order.side,
            sale_kind=order.sale_kind,
            how_to_call=order.how_to_call,
            calldata=order.calldata,
            replacement_pattern=order.replacement_pattern,
            static_extradata=order.static_extradata,
            v=order.v,
            r=order.r,
            s=order.s,
        )

    def addresses(self) -> list:
        return [
            self.exchange,
            self.maker,
            self.taker,
            self.fee_recipient,
            self.target,
            self.static_target,
            self.payment_token,
        ]

    def uints(self) -> list:
        return [
            self.maker_relayer_fee,
            self.taker_relayer_fee,
            self.maker_protocol_fee,
            self.taker_protocol_fee,
            self.base_price,
            self.extra,
            self.listing_time,
            self.expiration_time,
            self.salt,
        ]

    def kinds(self) -> list:
        return [self.fee_method, self.side, self.sale_kind, self.how_to_call]


@dataclass(frozen=True)
class SettlementCall:
    """A fully encoded, unsigned call that fills one order."""
    to: str
    data: bytes
    value: int
    standard: TokenStandard
    token_id: int
    quantity: int
    gas_limit: int

    @property
    def kind(self) -> str:
        return "settlement"


def build_transfer_calldata(
    standard: TokenStandard,
    recipient: str,
    token_id: int,
    quantity: int = 1,
) -> bytes:
    """Transfer calldata for the buy side, with an empty `from` word."""
    recipient = normalize_address(recipient)
    if standard == TokenStandard.ERC721:
        return ERC721_TRANSFER_SELECTOR + encode(
            ["address", "address", "uint256"],
            [ZERO_ADDRESS, recipient, token_id],
        )
    if standard == TokenStandard.ERC1155:
        return ERC1155_TRANSFER_SELECTOR + encode(
            ["address", "address", "uint256", "uint256", "bytes"],
            [ZERO_ADDRESS, recipient, token_id, quantity, b""],
        )
    raise UnsupportedStandard(standard)


def build_replacement_pattern(calldata: bytes) -> bytes:
    """Mask the first argument word (`from`) of a call, leave the rest fixed."""
    return b"\x00" * 4 + b"\xff" * 32 + b"\x00" * (len(calldata) - 36)


def derive_salt(order: Order, buyer: str, quantity: int) -> int:
    """Deterministic counter-order salt for (order, buyer, quantity)."""
    material = (
        bytes(order.order_hash)
        + bytes.fromhex(normalize_address(buyer)[2:])
        + quantity.to_bytes(32, "big")
    )
    return int.from_bytes(Web3.keccak(material), "big")


def match_sell(
    order: Order,
    buyer: str,
    recipient: str,
    quantity: int,
    listing_time: int,
    salt: int,
) -> WyvernOrder:
    """
    Build the buy-side counter order that matches a sell order.

    The buyer submits the match, so the counter order needs no signature.
    """
    calldata = build_transfer_calldata(order.standard, recipient, order.token_id, quantity)
    if int(order.fee_recipient, 16) == 0:
        fee_recipient = OPENSEA_FEE_RECIPIENT
    else:
        fee_recipient = ZERO_ADDRESS

    return replace(
        WyvernOrder.from_order(order),
        side=int(OrderSide.BUY),
        maker=normalize_address(buyer),
        taker=order.maker,
        fee_recipient=fee_recipient,
        base_price=order.price_for(quantity),
        extra=0,
        listing_time=listing_time,
        expiration_time=0,
        salt=salt,
        calldata=calldata,
        replacement_pattern=build_replacement_pattern(calldata),
        v=0,
        r=ZERO_BYTES32,
        s=ZERO_BYTES32,
    )


def encode_atomic_match(
    buy: WyvernOrder,
    sell: WyvernOrder,
    metadata: bytes = ZERO_BYTES32,
) -> bytes:
    """ABI-encode an `atomicMatch_` call for a buy/sell pair."""
    args = [
        [normalize_address(a) for a in buy.addresses() + sell.addresses()],
        buy.uints() + sell.uints(),
        buy.kinds() + sell.kinds(),
        buy.calldata,
        sell.calldata,
        buy.replacement_pattern,
        sell.replacement_pattern,
        buy.static_extradata,
        sell.static_extradata,
        [buy.v, sell.v],
        [buy.r, buy.s, sell.r, sell.s, metadata],
    ]
    return ATOMIC_MATCH_SELECTOR + encode(ATOMIC_MATCH_TYPES, args)


class SettlementEncoder:
    """
    Turns (Order, quantity) into a SettlementCall.

    Validation happens in a fixed order: funding currency, quantity for the
    token standard, then availability.
    """

    def __init__(
        self,
        buyer: str,
        listing_time: int,
        recipient: Optional[str] = None,
        funding_token: str = NATIVE_CURRENCY,
        gas_config: Optional[GasConfig] = None,
    ):
        self._buyer = normalize_address(buyer)
        self._recipient = normalize_address(recipient or buyer)
        self._listing_time = listing_time
        self._funding_token = funding_token
        self._gas = gas_config or get_config().gas

    @property
    def buyer(self) -> str:
        return self._buyer

    @property
    def recipient(self) -> str:
        return self._recipient

    def _check_quantity(self, order: Order, quantity: int) -> int:
        standard = order.standard
        if standard == TokenStandard.ERC721:
            if quantity != 1:
                raise InvalidQuantity(quantity, standard.value, "ERC721 fills are exactly 1")
            return self._gas.erc721_settlement_gas
        if standard == TokenStandard.ERC1155:
            if quantity < 1:
                raise InvalidQuantity(quantity, standard.value, "quantity must be at least 1")
            if quantity > order.quantity:
                raise InsufficientQuantity(
                    quantity, order.quantity, order.asset_contract, order.token_id
                )
            return self._gas.erc1155_settlement_gas
        raise UnsupportedStandard(standard)

    def encode(self, order: Order, quantity: int = 1) -> SettlementCall:
        """
        Encode the fill of one order.

        Raises:
            CurrencyMismatch: The order is not priced in the funding currency
            InvalidQuantity: Zero quantity, or ERC721 quantity other than 1
            InsufficientQuantity: ERC1155 quantity above what the order offers
        """
        if order.payment_token.lower() != self._funding_token.lower():
            raise CurrencyMismatch(
                self._funding_token,
                order.payment_token,
                order.asset_contract,
                order.token_id,
            )

        gas_limit = self._check_quantity(order, quantity)

        buy = match_sell(
            order,
            buyer=self._buyer,
            recipient=self._recipient,
            quantity=quantity,
            listing_time=self._listing_time,
            salt=derive_salt(order, self._buyer, quantity),
        )
        sell = WyvernOrder.from_order(order)
        data = encode_atomic_match(buy, sell)

        if quantity < order.quantity:
            logger.info(
                f"Partial fill of {order.asset_contract} #{order.token_id}: "
                f"{quantity}/{order.quantity} for {buy.base_price} wei"
            )

        return SettlementCall(
            to=normalize_address(order.exchange),
            data=data,
            value=buy.base_price,
            standard=order.standard,
            token_id=order.token_id,
            quantity=quantity,
            gas_limit=gas_limit,
        )
