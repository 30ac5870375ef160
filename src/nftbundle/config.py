"""
Configuration management for nftbundle.

Provides centralized configuration for:
- Relay submission (endpoint, target block window, in-flight attempts)
- Gas and fee parameters
- Receipt and block polling
- Orderbook access
- Order resolution fan-out
- Logging
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


NATIVE_CURRENCY = "0x0000000000000000000000000000000000000000"

DEFAULT_RELAY_URL = "https://relay.flashbots.net"


@dataclass
class RelayConfig:
    """Configuration for private bundle submission."""
    relay_url: str = DEFAULT_RELAY_URL
    max_blocks: int = 3  # Target blocks to try before giving up
    max_in_flight: int = 1  # Attempts whose inclusion is still unknown
    timeout_seconds: float = 120.0  # Wall-clock bound for the whole submission
    simulate_first: bool = True  # eth_callBundle before the first attempt
    http_timeout_seconds: float = 30.0


@dataclass
class GasConfig:
    """Configuration for fee and gas parameters."""
    # EIP-1559 base fee can grow 12.5% per block
    base_fee_projection_blocks: int = 5
    base_fee_growth_numerator: int = 1125
    base_fee_growth_denominator: int = 1000

    # Gas limits per call type
    erc721_settlement_gas: int = 350_000
    erc1155_settlement_gas: int = 400_000
    verifier_gas: int = 200_000

    # Priority fee for the public pool path (wei per gas)
    public_priority_fee_wei: int = 1_500_000_000


@dataclass
class PollingConfig:
    """Configuration for receipt and block polling."""
    poll_interval_seconds: float = 2.0
    receipt_timeout_seconds: float = 180.0


@dataclass
class OrderbookConfig:
    """Configuration for the marketplace orderbook client."""
    network: str = "mainnet"
    api_key: Optional[str] = None
    page_limit: int = 20
    http_timeout_seconds: float = 30.0


@dataclass
class ResolutionConfig:
    """Configuration for order resolution."""
    max_concurrent_lookups: int = 5
    listing_time_offset_seconds: int = 100  # Counter order listed in the past


@dataclass
class LoggingConfig:
    """Configuration for purchase pipeline logging."""
    transaction_level: str = "INFO"
    error_level: str = "ERROR"
    mask_addresses: bool = False


@dataclass
class NFTBundleConfig:
    """
    Master configuration for nftbundle.

    Supports loading from environment variables with prefix NFTBUNDLE_.
    """
    relay: RelayConfig = field(default_factory=RelayConfig)
    gas: GasConfig = field(default_factory=GasConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    orderbook: OrderbookConfig = field(default_factory=OrderbookConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    rpc_url: Optional[str] = None
    http_timeout_seconds: float = 30.0


def _get_env(key: str, default: Any = None, prefix: str = "NFTBUNDLE_") -> Any:
    """Get environment variable with prefix."""
    return os.getenv(f"{prefix}{key}", default)


def _get_env_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer NFTBUNDLE_{key}={value!r}")
        return default


def _get_env_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric NFTBUNDLE_{key}={value!r}")
        return default


def build_default_config() -> NFTBundleConfig:
    """Build default configuration with environment overrides."""
    relay = RelayConfig(
        relay_url=_get_env("RELAY_URL", DEFAULT_RELAY_URL),
        max_blocks=_get_env_int("RELAY_MAX_BLOCKS", 3),
        max_in_flight=_get_env_int("RELAY_MAX_IN_FLIGHT", 1),
        timeout_seconds=_get_env_float("RELAY_TIMEOUT_SECONDS", 120.0),
    )
    polling = PollingConfig(
        poll_interval_seconds=_get_env_float("POLL_INTERVAL_SECONDS", 2.0),
        receipt_timeout_seconds=_get_env_float("RECEIPT_TIMEOUT_SECONDS", 180.0),
    )
    orderbook = OrderbookConfig(
        network=_get_env("NETWORK", "mainnet"),
        api_key=_get_env("OPENSEA_API_KEY") or os.getenv("OPENSEA_API_KEY"),
    )

    return NFTBundleConfig(
        relay=relay,
        polling=polling,
        orderbook=orderbook,
        rpc_url=_get_env("RPC_URL"),
    )


# Global configuration instance
_global_config: Optional[NFTBundleConfig] = None


def get_config() -> NFTBundleConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = build_default_config()
    return _global_config


def set_config(config: Optional[NFTBundleConfig]) -> None:
    """Set the global configuration instance (None resets to defaults)."""
    global _global_config
    _global_config = config


# Chain IDs the tool knows how to talk about
CHAIN_ID_MAP: Dict[str, int] = {
    "mainnet": 1,
    "rinkeby": 4,
    "goerli": 5,
    "sepolia": 11155111,
}


def validate_chain_id(network: str, received_chain_id: int) -> bool:
    """
    Validate that the connected node serves the expected network.

    Signing against the wrong chain id produces transactions that will never
    be accepted, so a mismatch is logged loudly.
    """
    expected = CHAIN_ID_MAP.get(network)
    if expected is None:
        logger.warning(f"Unknown network for validation: {network}")
        return False

    if received_chain_id != expected:
        logger.error(
            f"Chain ID mismatch for {network}! "
            f"Expected {expected}, got {received_chain_id}."
        )
        return False

    return True
