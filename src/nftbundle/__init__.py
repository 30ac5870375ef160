"""Atomic multi-order NFT purchases over a private relay."""

from .bundle import Bundle, BundleBuilder, GasParams, SignedTransaction
from .config import NFTBundleConfig, get_config, set_config
from .encoding import SettlementCall, SettlementEncoder
from .exceptions import (
    BatchResolutionError,
    BundleError,
    CurrencyMismatch,
    EmptyBundle,
    EncodingError,
    InsufficientQuantity,
    InvalidQuantity,
    NFTBundleError,
    OrderbookUnavailable,
    OrderNotFound,
    PublicBroadcastFailed,
    RelayRejected,
    ResolutionError,
    SigningError,
    SubmissionError,
    UnsupportedOrderKind,
    UnsupportedStandard,
)
from .orchestrator import (
    PreparedPurchase,
    PurchaseOptions,
    PurchaseOrchestrator,
    PurchaseResult,
)
from .orders import (
    Order,
    OrderResolver,
    PurchaseItem,
    PurchaseRequest,
    TokenStandard,
)
from .orderbook import Network, OpenSeaOrderbook
from .provider import JsonRpcProvider, NFTReader
from .relay import FlashbotsRelay
from .submission import (
    BundleOutcome,
    SubmissionResult,
    SubmissionStrategy,
    TxOutcome,
)
from .verifier import VerifierCall, build_verifier_call

__version__ = "0.1.0"

__all__ = [
    "Bundle",
    "BundleBuilder",
    "GasParams",
    "SignedTransaction",
    "NFTBundleConfig",
    "get_config",
    "set_config",
    "SettlementCall",
    "SettlementEncoder",
    "BatchResolutionError",
    "BundleError",
    "CurrencyMismatch",
    "EmptyBundle",
    "EncodingError",
    "InsufficientQuantity",
    "InvalidQuantity",
    "NFTBundleError",
    "OrderbookUnavailable",
    "OrderNotFound",
    "PublicBroadcastFailed",
    "RelayRejected",
    "ResolutionError",
    "SigningError",
    "SubmissionError",
    "UnsupportedOrderKind",
    "UnsupportedStandard",
    "PreparedPurchase",
    "PurchaseOptions",
    "PurchaseOrchestrator",
    "PurchaseResult",
    "Order",
    "OrderResolver",
    "PurchaseItem",
    "PurchaseRequest",
    "TokenStandard",
    "Network",
    "OpenSeaOrderbook",
    "JsonRpcProvider",
    "NFTReader",
    "FlashbotsRelay",
    "BundleOutcome",
    "SubmissionResult",
    "SubmissionStrategy",
    "TxOutcome",
    "VerifierCall",
    "build_verifier_call",
]
