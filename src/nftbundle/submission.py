"""
Submission strategy for signed bundles.

Two delivery paths:
- Private relay: the whole bundle is offered to block builders for one
  target block at a time. The same signed bytes are resubmitted for each new
  target block, so a retry can never double-spend. Either every transaction
  lands or none does.
- Public pool: transactions are broadcast one by one in nonce order, each
  waiting for its receipt. There is no atomicity on this path; a failure
  leaves earlier transactions final on-chain and is reported per index.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

import httpx

from .bundle import Bundle
from .config import NFTBundleConfig, PollingConfig, RelayConfig, get_config
from .exceptions import PublicBroadcastFailed, RelayRejected
from .logging_utils import ChainLogger, OperationType, get_chain_logger
from .provider import ChainProvider, Receipt, RPCError, wait_for_receipt
from .relay import FlashbotsRelay, RelayClient

logger = logging.getLogger(__name__)


class TxOutcome(str, Enum):
    """What happened to one bundle transaction."""
    MINED = "mined"
    REVERTED = "reverted"
    NOT_INCLUDED = "not_included"
    NOT_ATTEMPTED = "not_attempted"
    PENDING = "pending"


class BundleOutcome(str, Enum):
    """What happened to the bundle as a whole."""
    FULLY_INCLUDED = "fully_included"
    NOT_INCLUDED = "not_included"
    PARTIALLY_INCLUDED = "partially_included"  # public path only
    TIMED_OUT = "timed_out"


@dataclass
class TxReport:
    """Per-transaction outcome."""
    index: int
    tx_hash: str
    kind: str
    nonce: int
    outcome: TxOutcome = TxOutcome.NOT_ATTEMPTED
    block_number: Optional[int] = None
    error: Optional[str] = None


@dataclass
class RelayAttempt:
    """One eth_sendBundle call and what came of it."""
    target_block: int
    accepted: bool
    bundle_hash: Optional[str] = None
    error: Optional[str] = None
    permanent: bool = False
    included: bool = False


@dataclass
class SubmissionResult:
    """Outcome of delivering one bundle."""
    outcome: BundleOutcome
    transactions: List[TxReport]
    via: str  # "relay" or "public"
    atomic: bool
    attempts: List[RelayAttempt] = field(default_factory=list)
    included_block: Optional[int] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome == BundleOutcome.FULLY_INCLUDED

    def _indices(self, *outcomes: TxOutcome) -> List[int]:
        return [r.index for r in self.transactions if r.outcome in outcomes]

    @property
    def succeeded_indices(self) -> List[int]:
        return self._indices(TxOutcome.MINED)

    @property
    def failed_indices(self) -> List[int]:
        return self._indices(TxOutcome.REVERTED, TxOutcome.NOT_INCLUDED)

    @property
    def not_attempted_indices(self) -> List[int]:
        return self._indices(TxOutcome.NOT_ATTEMPTED)

    def raise_for_failure(self) -> None:
        """
        Raise if the bundle definitely did not go through.

        A timed out submission is not raised: its transactions may still land.
        """
        if self.outcome in (BundleOutcome.FULLY_INCLUDED, BundleOutcome.TIMED_OUT):
            return

        if self.via == "public":
            failed = self.failed_indices
            index = failed[0] if failed else 0
            raise PublicBroadcastFailed(
                index=index,
                reason=self.transactions[index].error or self.transactions[index].outcome.value,
                succeeded=self.succeeded_indices,
                not_attempted=self.not_attempted_indices,
            )

        last = self.attempts[-1] if self.attempts else None
        raise RelayRejected(
            self.error or "Bundle was not included",
            target_block=last.target_block if last else None,
            permanent=any(a.permanent for a in self.attempts),
        )


def _reports_for(bundle: Bundle, outcome: TxOutcome) -> List[TxReport]:
    return [
        TxReport(index=tx.index, tx_hash=tx.tx_hash, kind=tx.kind, nonce=tx.nonce, outcome=outcome)
        for tx in bundle
    ]


class RelaySubmitter:
    """
    Retry-by-resubmission over a private relay.

    Attempts target start_block, start_block + 1, ... up to max_blocks. Each
    accepted attempt gets a watcher that waits for its target block and then
    checks for the bundle's receipts. At most max_in_flight watchers overlap;
    a shared "included" event is checked before every new attempt.
    """

    def __init__(
        self,
        relay: RelayClient,
        provider: ChainProvider,
        config: Optional[RelayConfig] = None,
        polling: Optional[PollingConfig] = None,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._relay = relay
        self._provider = provider
        self._config = config or get_config().relay
        self._polling = polling or get_config().polling
        self._chain_logger = chain_logger or get_chain_logger()

    async def submit(self, bundle: Bundle, start_block: Optional[int] = None) -> SubmissionResult:
        if start_block is None:
            start_block = await self._provider.get_block_number() + 1

        if self._config.simulate_first and hasattr(self._relay, "simulate_bundle"):
            async with self._chain_logger.operation_context(
                OperationType.SIMULATE, target_block=start_block
            ):
                simulation = await self._relay.simulate_bundle(bundle.raw_transactions, start_block)
            if not simulation.success:
                logger.error(f"Bundle simulation failed: {simulation.error}")
                return SubmissionResult(
                    outcome=BundleOutcome.NOT_INCLUDED,
                    transactions=_reports_for(bundle, TxOutcome.NOT_ATTEMPTED),
                    via="relay",
                    atomic=True,
                    error=f"Simulation failed: {simulation.error}",
                )
            logger.info(f"Bundle simulation succeeded, gas used {simulation.total_gas_used}")

        attempts: List[RelayAttempt] = []
        async with self._chain_logger.operation_context(
            OperationType.RELAY_SUBMIT,
            start_block=start_block,
            max_blocks=self._config.max_blocks,
        ):
            try:
                included_block = await asyncio.wait_for(
                    self._run(bundle, start_block, attempts),
                    timeout=self._config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Gave up waiting for inclusion after {self._config.timeout_seconds}s; "
                    f"the bundle may still land"
                )
                return SubmissionResult(
                    outcome=BundleOutcome.TIMED_OUT,
                    transactions=_reports_for(bundle, TxOutcome.PENDING),
                    via="relay",
                    atomic=True,
                    attempts=attempts,
                    error=f"Timed out after {self._config.timeout_seconds}s",
                )

        if included_block is None:
            rejections = [a.error for a in attempts if a.error]
            return SubmissionResult(
                outcome=BundleOutcome.NOT_INCLUDED,
                transactions=_reports_for(bundle, TxOutcome.NOT_INCLUDED),
                via="relay",
                atomic=True,
                attempts=attempts,
                error=rejections[-1] if rejections else (
                    f"Bundle not included in blocks {start_block}.."
                    f"{start_block + self._config.max_blocks - 1}"
                ),
            )

        reports = await self._collect_receipts(bundle)
        return SubmissionResult(
            outcome=BundleOutcome.FULLY_INCLUDED,
            transactions=reports,
            via="relay",
            atomic=True,
            attempts=attempts,
            included_block=included_block,
        )

    async def _run(
        self,
        bundle: Bundle,
        start_block: int,
        attempts: List[RelayAttempt],
    ) -> Optional[int]:
        included = asyncio.Event()
        slots = asyncio.Semaphore(max(1, self._config.max_in_flight))
        watchers: List[asyncio.Task] = []
        landed: List[Tuple[RelayAttempt, Receipt]] = []
        raw_txs = bundle.raw_transactions

        try:
            for offset in range(self._config.max_blocks):
                target_block = start_block + offset
                await slots.acquire()
                if included.is_set():
                    slots.release()
                    break

                response = await self._relay.submit_bundle(raw_txs, target_block)
                attempt = RelayAttempt(
                    target_block=target_block,
                    accepted=response.accepted,
                    bundle_hash=response.bundle_hash,
                    error=response.error,
                    permanent=response.permanent,
                )
                attempts.append(attempt)
                self._chain_logger.log_relay_attempt(
                    target_block, response.accepted, response.bundle_hash, response.error
                )

                if not response.accepted:
                    slots.release()
                    if response.permanent:
                        logger.error(f"Relay permanently rejected the bundle: {response.error}")
                        break
                    continue

                watchers.append(
                    asyncio.create_task(self._watch(bundle, attempt, included, slots, landed))
                )

            pending = set(watchers)
            while pending and not included.is_set():
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    task.result()
        finally:
            for task in watchers:
                if not task.done():
                    task.cancel()

        if not landed:
            return None

        watched, receipt = landed[0]
        included_block = receipt.block_number
        if included_block is None:
            included_block = watched.target_block
        for attempt in attempts:
            attempt.included = attempt.target_block == included_block
        return included_block

    async def _watch(
        self,
        bundle: Bundle,
        attempt: RelayAttempt,
        included: asyncio.Event,
        slots: asyncio.Semaphore,
        landed: List[Tuple[RelayAttempt, Receipt]],
    ) -> None:
        try:
            await self._wait_for_block(attempt.target_block)
            if included.is_set():
                return
            async with self._chain_logger.operation_context(
                OperationType.INCLUSION_CHECK, target_block=attempt.target_block
            ):
                receipt = await self._provider.get_transaction_receipt(bundle[0].tx_hash)
            if receipt is not None:
                landed.append((attempt, receipt))
                included.set()
                logger.info(f"Bundle included in block {receipt.block_number}")
            else:
                logger.info(f"Bundle not included in block {attempt.target_block}")
        except (RPCError, httpx.HTTPError) as e:
            # Inclusion unknown; a later attempt or the final receipt check decides
            logger.warning(f"Inclusion check for block {attempt.target_block} failed: {e}")
        finally:
            slots.release()

    async def _wait_for_block(self, target_block: int) -> None:
        while await self._provider.get_block_number() < target_block:
            await asyncio.sleep(self._polling.poll_interval_seconds)

    async def _collect_receipts(self, bundle: Bundle) -> List[TxReport]:
        reports = _reports_for(bundle, TxOutcome.NOT_INCLUDED)
        for tx, report in zip(bundle, reports):
            try:
                receipt = await self._provider.get_transaction_receipt(tx.tx_hash)
            except (RPCError, httpx.HTTPError) as e:
                report.outcome = TxOutcome.PENDING
                report.error = f"Receipt unavailable: {e}"
                logger.warning(f"Could not fetch receipt for {tx.tx_hash}: {e}")
                continue
            if receipt is None:
                continue
            report.block_number = receipt.block_number
            if receipt.succeeded:
                report.outcome = TxOutcome.MINED
                self._chain_logger.log_transaction_mined(tx.tx_hash, receipt.block_number)
            else:
                report.outcome = TxOutcome.REVERTED
                self._chain_logger.log_transaction_failed(tx.tx_hash, "reverted")
        return reports


PUBLIC_POOL_WARNING = (
    "No relay configured: broadcasting to the public pool. "
    "The purchase is not atomic and is exposed to front-running."
)


class PublicPoolSubmitter:
    """Sequential broadcast with a receipt wait between transactions."""

    def __init__(
        self,
        provider: ChainProvider,
        polling: Optional[PollingConfig] = None,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._provider = provider
        self._polling = polling or get_config().polling
        self._chain_logger = chain_logger or get_chain_logger()

    async def submit(self, bundle: Bundle) -> SubmissionResult:
        logger.warning(PUBLIC_POOL_WARNING)
        reports = _reports_for(bundle, TxOutcome.NOT_ATTEMPTED)
        timed_out = False

        async with self._chain_logger.operation_context(
            OperationType.PUBLIC_BROADCAST, transactions=len(bundle)
        ):
            for tx in bundle:
                report = reports[tx.index]
                try:
                    await self._provider.send_raw_transaction(tx.raw_hex)
                except (RPCError, httpx.HTTPError) as e:
                    report.outcome = TxOutcome.NOT_INCLUDED
                    report.error = str(e)
                    self._chain_logger.log_transaction_failed(tx.tx_hash, str(e))
                    break
                self._chain_logger.log_transaction_broadcast(tx.tx_hash)

                try:
                    receipt = await wait_for_receipt(
                        self._provider,
                        tx.tx_hash,
                        timeout=self._polling.receipt_timeout_seconds,
                        poll_interval=self._polling.poll_interval_seconds,
                    )
                except (RPCError, httpx.HTTPError) as e:
                    # Already broadcast, so it may still be mined
                    report.outcome = TxOutcome.PENDING
                    report.error = f"Receipt unavailable: {e}"
                    logger.warning(f"Could not fetch receipt for {tx.tx_hash}: {e}")
                    timed_out = True
                    break
                if receipt is None:
                    report.outcome = TxOutcome.PENDING
                    report.error = f"No receipt after {self._polling.receipt_timeout_seconds}s"
                    timed_out = True
                    break

                report.block_number = receipt.block_number
                if not receipt.succeeded:
                    report.outcome = TxOutcome.REVERTED
                    report.error = "reverted"
                    self._chain_logger.log_transaction_failed(tx.tx_hash, "reverted")
                    break

                report.outcome = TxOutcome.MINED
                self._chain_logger.log_transaction_mined(tx.tx_hash, receipt.block_number)

        mined = [r for r in reports if r.outcome == TxOutcome.MINED]
        if timed_out:
            outcome = BundleOutcome.TIMED_OUT
        elif len(mined) == len(reports):
            outcome = BundleOutcome.FULLY_INCLUDED
        elif mined:
            outcome = BundleOutcome.PARTIALLY_INCLUDED
        else:
            outcome = BundleOutcome.NOT_INCLUDED

        failed = [r for r in reports if r.error]
        return SubmissionResult(
            outcome=outcome,
            transactions=reports,
            via="public",
            atomic=False,
            included_block=mined[-1].block_number if mined else None,
            error=f"Transaction {failed[0].index}: {failed[0].error}" if failed else None,
            warnings=[PUBLIC_POOL_WARNING],
        )


class SubmissionStrategy:
    """Dispatches a bundle to the relay when one is configured, else the public pool."""

    def __init__(
        self,
        provider: ChainProvider,
        relay: Optional[RelayClient] = None,
        config: Optional[NFTBundleConfig] = None,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._provider = provider
        self._relay = relay
        self._config = config or get_config()
        self._chain_logger = chain_logger or get_chain_logger()

    @classmethod
    def for_config(
        cls,
        provider: ChainProvider,
        relay_url: Optional[str] = None,
        auth_key: Optional[str] = None,
        max_blocks: Optional[int] = None,
        config: Optional[NFTBundleConfig] = None,
    ) -> "SubmissionStrategy":
        config = config or get_config()
        if max_blocks is not None:
            config = replace(config, relay=replace(config.relay, max_blocks=max_blocks))
        relay = None
        if relay_url:
            relay = FlashbotsRelay(
                relay_url,
                auth_key=auth_key,
                timeout=config.relay.http_timeout_seconds,
            )
        return cls(provider, relay=relay, config=config)

    @property
    def uses_relay(self) -> bool:
        return self._relay is not None

    async def submit(self, bundle: Bundle, start_block: Optional[int] = None) -> SubmissionResult:
        if self._relay is not None:
            submitter = RelaySubmitter(
                self._relay,
                self._provider,
                config=self._config.relay,
                polling=self._config.polling,
                chain_logger=self._chain_logger,
            )
            return await submitter.submit(bundle, start_block=start_block)

        submitter = PublicPoolSubmitter(
            self._provider,
            polling=self._config.polling,
            chain_logger=self._chain_logger,
        )
        return await submitter.submit(bundle)

    async def close(self) -> None:
        close = getattr(self._relay, "close", None)
        if close is not None:
            await close()
