"""
Atomic multi-order purchase.

One run is strictly sequential: resolve every requested item, encode one
settlement per item in request order, append the verifier call when a bribe
is paid through it, sign with consecutive nonces, then submit. Only order
resolution fans out, since lookups are independent and read-only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from .bundle import (
    Bundle,
    BundleBuilder,
    GasParams,
    UnsignedCall,
    project_max_base_fee,
    split_bribe_as_priority_fee,
)
from .config import NFTBundleConfig, get_config
from .encoding import SettlementEncoder
from .logging_utils import ChainLogger, OperationType, get_chain_logger
from .orders import (
    Order,
    OrderbookClient,
    OrderResolver,
    PurchaseRequest,
    TokenStandard,
    normalize_address,
)
from .provider import BlockHeader, ChainProvider
from .submission import SubmissionResult, SubmissionStrategy
from .verifier import VerifierCall, build_verifier_call

logger = logging.getLogger(__name__)


class BalanceReader(Protocol):
    """Reads ERC1155 balances the buyer already holds."""

    async def balances(self, owner: str, token_ids: Sequence[int]) -> Dict[int, int]:
        ...


@dataclass
class PurchaseOptions:
    """Per-run knobs for a purchase."""
    bribe: int = 0  # wei
    verifier: Optional[str] = None  # verifier contract, receives the bribe
    recipient: Optional[str] = None  # defaults to the signer
    dry_run: bool = False
    start_block: Optional[int] = None  # first relay target block

    @property
    def uses_verifier(self) -> bool:
        return self.bribe > 0 and self.verifier is not None


@dataclass
class PreparedPurchase:
    """Everything built for a run before anything is sent."""
    request: PurchaseRequest
    orders: List[Order]
    calls: List[UnsignedCall]
    bundle: Bundle
    gas: GasParams
    block: BlockHeader
    verifier_call: Optional[VerifierCall] = None

    @property
    def total_value(self) -> int:
        return self.bundle.total_value


@dataclass
class PurchaseResult:
    """Outcome of a purchase run; no submission for dry runs."""
    prepared: PreparedPurchase
    submission: Optional[SubmissionResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def dry_run(self) -> bool:
        return self.submission is None

    @property
    def success(self) -> bool:
        return self.submission is not None and self.submission.success


class PurchaseOrchestrator:
    """
    Buys every item of a PurchaseRequest in one bundle.

    Example:
        orchestrator = PurchaseOrchestrator(orderbook, provider, builder, strategy)
        result = await orchestrator.purchase(request, PurchaseOptions(bribe=10**17, verifier=addr))
    """

    def __init__(
        self,
        orderbook: OrderbookClient,
        provider: ChainProvider,
        builder: BundleBuilder,
        submission: SubmissionStrategy,
        config: Optional[NFTBundleConfig] = None,
        chain_logger: Optional[ChainLogger] = None,
        balance_reader: Optional[BalanceReader] = None,
    ):
        self._config = config or get_config()
        self._resolver = OrderResolver(orderbook, self._config.resolution)
        self._provider = provider
        self._builder = builder
        self._submission = submission
        self._chain_logger = chain_logger or get_chain_logger()
        self._balance_reader = balance_reader

    @property
    def buyer(self) -> str:
        return self._builder.address

    async def prepare(
        self,
        request: PurchaseRequest,
        options: Optional[PurchaseOptions] = None,
    ) -> PreparedPurchase:
        """
        Resolve, encode and sign a purchase without submitting it.

        Raises:
            ResolutionError: Any requested item could not be resolved
            EncodingError: An order could not be encoded
            BundleError: Signing failed
        """
        options = options or PurchaseOptions()
        buyer = self.buyer
        recipient = normalize_address(options.recipient or buyer)

        async with self._chain_logger.operation_context(
            OperationType.RESOLVE,
            contract=request.contract,
            items=len(request.items),
        ):
            orders = await self._resolver.resolve_all(request, buyer=buyer)

        block = await self._provider.get_latest_block()
        listing_time = block.timestamp - self._config.resolution.listing_time_offset_seconds

        async with self._chain_logger.operation_context(OperationType.ENCODE, items=len(orders)):
            encoder = SettlementEncoder(
                buyer=buyer,
                listing_time=listing_time,
                recipient=recipient,
                gas_config=self._config.gas,
            )
            calls: List[UnsignedCall] = [
                encoder.encode(order, item.quantity)
                for order, item in zip(orders, request.items)
            ]

            verifier_call = None
            if options.uses_verifier:
                existing = await self._existing_balances(request, recipient)
                verifier_call = build_verifier_call(
                    request.standard,
                    verifier=options.verifier,
                    buyer=recipient,
                    nft_contract=request.contract,
                    items=request.items,
                    bribe=options.bribe,
                    existing_balances=existing,
                    gas_config=self._config.gas,
                )
                calls.append(verifier_call)

        gas = self._gas_params(block, options, calls)

        async with self._chain_logger.operation_context(OperationType.SIGN, calls=len(calls)):
            base_nonce = await self._provider.current_nonce(buyer)
            bundle = self._builder.build(calls, base_nonce, gas)

        return PreparedPurchase(
            request=request,
            orders=orders,
            calls=calls,
            bundle=bundle,
            gas=gas,
            block=block,
            verifier_call=verifier_call,
        )

    async def purchase(
        self,
        request: PurchaseRequest,
        options: Optional[PurchaseOptions] = None,
    ) -> PurchaseResult:
        """Prepare and, unless this is a dry run, submit."""
        options = options or PurchaseOptions()
        prepared = await self.prepare(request, options)

        if options.dry_run:
            logger.info(
                f"Dry run: built {len(prepared.bundle)} txs worth {prepared.total_value} wei, "
                f"not submitting"
            )
            return PurchaseResult(prepared=prepared)

        submission = await self._submission.submit(prepared.bundle, start_block=options.start_block)
        logger.info(
            f"Purchase of {len(request.items)} items finished: {submission.outcome.value}"
        )
        return PurchaseResult(
            prepared=prepared,
            submission=submission,
            warnings=list(submission.warnings),
        )

    async def _existing_balances(
        self,
        request: PurchaseRequest,
        owner: str,
    ) -> Optional[Dict[int, int]]:
        if request.standard != TokenStandard.ERC1155:
            return None
        if self._balance_reader is None:
            logger.warning("No balance reader: assuming the buyer holds none of the tokens yet")
            return None
        return await self._balance_reader.balances(owner, request.token_ids)

    def _gas_params(
        self,
        block: BlockHeader,
        options: PurchaseOptions,
        calls: Sequence[UnsignedCall],
    ) -> GasParams:
        max_base_fee = project_max_base_fee(block.base_fee_per_gas, self._config.gas)
        if self._submission.uses_relay:
            gas = GasParams(max_fee_per_gas=max_base_fee)
        else:
            tip = self._config.gas.public_priority_fee_wei
            gas = GasParams(max_fee_per_gas=max_base_fee + tip, max_priority_fee_per_gas=tip)

        if options.bribe > 0 and not options.uses_verifier:
            gas = split_bribe_as_priority_fee(gas, options.bribe, calls)
        return gas
