"""
Structured logging for the purchase pipeline.

Features:
- Operation context tracking with timing for every pipeline stage
- Transaction lifecycle logging (signed, broadcast, mined, failed)
- Relay attempt logging
- Optional address masking
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .config import LoggingConfig, get_config

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Stages of a purchase run."""
    RESOLVE = "resolve"
    ENCODE = "encode"
    SIGN = "sign"
    SIMULATE = "simulate"
    RELAY_SUBMIT = "relay_submit"
    PUBLIC_BROADCAST = "public_broadcast"
    INCLUSION_CHECK = "inclusion_check"


@dataclass
class OperationContext:
    """Context for one pipeline stage."""
    operation_id: str
    operation_type: OperationType
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark operation as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (
            (self.completed_at - self.started_at).total_seconds() * 1000
        )
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


@dataclass
class TransactionLog:
    """Log entry for one bundle transaction."""
    tx_hash: str
    index: int
    kind: str
    from_address: str
    to_address: str
    value_wei: int
    nonce: int
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    status: str = "signed"
    block_number: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self, mask_addresses: bool = False) -> Dict[str, Any]:
        from_addr = mask_address(self.from_address) if mask_addresses else self.from_address
        to_addr = mask_address(self.to_address) if mask_addresses else self.to_address

        return {
            "tx_hash": self.tx_hash,
            "index": self.index,
            "kind": self.kind,
            "from_address": from_addr,
            "to_address": to_addr,
            "value_wei": self.value_wei,
            "nonce": self.nonce,
            "gas_limit": self.gas_limit,
            "max_fee_per_gas": self.max_fee_per_gas,
            "max_priority_fee_per_gas": self.max_priority_fee_per_gas,
            "status": self.status,
            "block_number": self.block_number,
            "error": self.error,
        }


def mask_address(address: str) -> str:
    """Mask middle portion of address for privacy."""
    if len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


class ChainLogger:
    """
    Logger for purchase runs.

    Keeps one TransactionLog per signed transaction so that later lifecycle
    events (broadcast, mined, failed) update the same record.
    """

    def __init__(
        self,
        name: str = "nftbundle",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or get_config().logging
        self._operation_counter = 0
        self._transactions: Dict[str, TransactionLog] = {}

    def _generate_operation_id(self) -> str:
        self._operation_counter += 1
        timestamp = int(time.time() * 1000)
        return f"op_{timestamp}_{self._operation_counter}"

    def _get_level(self, level_str: str) -> int:
        return getattr(logging, level_str.upper(), logging.INFO)

    @asynccontextmanager
    async def operation_context(self, operation_type: OperationType, **metadata):
        """
        Context manager for tracking a pipeline stage.

        Usage:
            async with chain_logger.operation_context(OperationType.SIGN, calls=3) as ctx:
                bundle = builder.build(...)
                ctx.metadata["bundle_size"] = len(bundle)
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            metadata=metadata,
        )
        self._logger.debug(
            f"Starting {operation_type.value}",
            extra={"operation": ctx.to_dict()},
        )

        try:
            yield ctx
            ctx.complete(success=True)
        except Exception as e:
            ctx.complete(success=False, error=str(e))
            raise
        except BaseException:
            ctx.complete(success=False, error="cancelled")
            raise
        finally:
            level = (
                self._get_level(self._config.error_level)
                if not ctx.success
                else logging.DEBUG
            )
            self._logger.log(
                level,
                f"Completed {operation_type.value} in {ctx.duration_ms:.0f}ms "
                f"(success={ctx.success})",
                extra={"operation": ctx.to_dict()},
            )

    def log_transaction_signed(
        self,
        tx_hash: str,
        index: int,
        kind: str,
        from_address: str,
        to_address: str,
        value_wei: int,
        nonce: int,
        gas_limit: int,
        max_fee_per_gas: int,
        max_priority_fee_per_gas: int,
    ) -> None:
        entry = TransactionLog(
            tx_hash=tx_hash,
            index=index,
            kind=kind,
            from_address=from_address,
            to_address=to_address,
            value_wei=value_wei,
            nonce=nonce,
            gas_limit=gas_limit,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
        )
        self._transactions[tx_hash] = entry

        self._logger.log(
            self._get_level(self._config.transaction_level),
            f"Signed {kind} tx #{index} nonce={nonce} value={value_wei} wei "
            f"(max-fee: {max_fee_per_gas}, max-priority-fee: {max_priority_fee_per_gas}, "
            f"gas-limit: {gas_limit})",
            extra={"transaction": entry.to_dict(self._config.mask_addresses)},
        )

    def _update(self, tx_hash: str, **changes: Any) -> Optional[TransactionLog]:
        entry = self._transactions.get(tx_hash)
        if entry is not None:
            for key, value in changes.items():
                setattr(entry, key, value)
        return entry

    def log_transaction_broadcast(self, tx_hash: str) -> None:
        entry = self._update(tx_hash, status="broadcast")
        self._logger.log(
            self._get_level(self._config.transaction_level),
            f"Broadcast tx {tx_hash}",
            extra={"transaction": entry.to_dict(self._config.mask_addresses) if entry else {}},
        )

    def log_transaction_mined(self, tx_hash: str, block_number: Optional[int]) -> None:
        entry = self._update(tx_hash, status="mined", block_number=block_number)
        self._logger.log(
            self._get_level(self._config.transaction_level),
            f"Tx {tx_hash} mined in block {block_number}",
            extra={"transaction": entry.to_dict(self._config.mask_addresses) if entry else {}},
        )

    def log_transaction_failed(self, tx_hash: str, error: str) -> None:
        entry = self._update(tx_hash, status="failed", error=error)
        self._logger.log(
            self._get_level(self._config.error_level),
            f"Tx {tx_hash} failed: {error}",
            extra={"transaction": entry.to_dict(self._config.mask_addresses) if entry else {}},
        )

    def log_relay_attempt(
        self,
        target_block: int,
        accepted: bool,
        bundle_hash: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if accepted:
            self._logger.info(
                f"Bundle submitted for block {target_block}"
                + (f" (bundle hash {bundle_hash})" if bundle_hash else "")
            )
        else:
            self._logger.warning(f"Relay rejected bundle for block {target_block}: {error}")

    def get_transaction_log(self, tx_hash: str) -> Optional[TransactionLog]:
        return self._transactions.get(tx_hash)


# Global logger instance
_chain_logger: Optional[ChainLogger] = None


def get_chain_logger(
    name: str = "nftbundle",
    config: Optional[LoggingConfig] = None,
) -> ChainLogger:
    """Get the global chain logger instance."""
    global _chain_logger
    if _chain_logger is None:
        _chain_logger = ChainLogger(name, config)
    return _chain_logger


def setup_logging(level: str = "INFO", format_string: Optional[str] = None) -> None:
    """Set up logging for command line use."""
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
    )

    logging.getLogger("nftbundle").setLevel(getattr(logging, level.upper()))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
