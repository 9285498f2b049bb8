"""Resilience controller: the public entry point of the analysis engine.

A request walks an explicit state machine:

    ATTEMPT_FULL ──(>=1 success)──> AGGREGATE ──> SUCCESS (multi-provider)
         │                              │
         │ (0 successes)                │ (merged list empty)
         v                              v
    ATTEMPT_FALLBACK ─────(ok)────> SUCCESS (single-provider-fallback)
         │
         └────────────(fails)─────> FAILURE ("all providers exhausted")

There is exactly one fallback call and no retry loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .aggregation import AggregatedRecord, MergeStrategy, aggregate
from .config import EngineConfig
from .errors import AggregationEmptyError, EngineNotInitializedError, FallbackExhaustedError, SigningUnavailableError
from .execution import FanOutCoordinator, FanOutResult
from .invoker import ProviderInvoker
from .models import AnalysisResult, Confidence, ExecutionMode, ProviderOutcome, RequestContext
from .signing import IntegritySigner, Signer

logger = logging.getLogger(__name__)

EXHAUSTED_CAUSE = "all providers exhausted"


class EngineState(Enum):
    ATTEMPT_FULL = "attempt_full"
    AGGREGATE = "aggregate"
    ATTEMPT_FALLBACK = "attempt_fallback"
    SUCCESS = "success"
    FAILURE = "failure"


TERMINAL_STATES = {EngineState.SUCCESS, EngineState.FAILURE}


@dataclass
class _Run:
    """Per-request working state; never shared between requests."""
    context: RequestContext
    fanout: FanOutResult = field(default_factory=FanOutResult)
    fallback: Optional[ProviderOutcome] = None
    result: Optional[AnalysisResult] = None
    history: List[EngineState] = field(default_factory=list)

    @property
    def providers_attempted(self) -> int:
        return self.fanout.attempted + (1 if self.fallback is not None else 0)


class AnalysisEngine:
    """Fan out a meal image to several providers and reconcile the answers."""

    def __init__(self, config: Optional[EngineConfig] = None, client: Any = None) -> None:
        self.config = config or EngineConfig()
        self._client = client
        self._owns_client = client is None
        self._signer: Optional[IntegritySigner] = None
        self._initialized = False
        self._invoker: Optional[ProviderInvoker] = None
        self._coordinator: Optional[FanOutCoordinator] = None
        try:
            self.merge_strategy = MergeStrategy(self.config.merge_strategy)
        except ValueError:
            logger.warning("Unknown merge strategy %r; using pairwise", self.config.merge_strategy)
            self.merge_strategy = MergeStrategy.PAIRWISE

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def signing_enabled(self) -> bool:
        return self._signer is not None

    def initialize(self, signer: Optional[Signer] = None) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_secs))
            self._owns_client = True
        self._signer = IntegritySigner(signer) if signer is not None else None
        self._invoker = ProviderInvoker(self._client, self.config)
        self._coordinator = FanOutCoordinator(self._invoker, timeout_secs=self.config.timeout_secs)
        self._initialized = True
        logger.info(
            "Analysis engine initialized: %d provider target(s), fallback %s, signing %s",
            len(self.config.provider_targets),
            self.config.fallback_target.label,
            "enabled" if self._signer else "disabled",
        )

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            finally:
                self._client = None
        self._signer = None
        self._invoker = None
        self._coordinator = None
        self._initialized = False
        logger.info("Analysis engine shut down.")

    async def __aenter__(self) -> "AnalysisEngine":
        if not self._initialized:
            self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def analyze(
        self,
        image_base64: str,
        credentials: Mapping[str, str],
        request_id: Optional[str] = None,
    ) -> AnalysisResult:
        """Analyze one image.

        Returns:
            The final AnalysisResult (multi-provider or fallback mode)

        Raises:
            FallbackExhaustedError: when the fan-out and the fallback both failed
            EngineNotInitializedError: when initialize() has not been called
        """
        if not self._initialized:
            raise EngineNotInitializedError("Engine not initialized. Call initialize() first.")

        context = RequestContext(
            image_base64=image_base64,
            credentials=credentials,
            request_id=request_id or uuid.uuid4().hex[:12],
            signer=self._signer,
        )
        run = _Run(context=context)
        handlers = {
            EngineState.ATTEMPT_FULL: self._attempt_full,
            EngineState.AGGREGATE: self._aggregate,
            EngineState.ATTEMPT_FALLBACK: self._attempt_fallback,
        }

        state = EngineState.ATTEMPT_FULL
        while state not in TERMINAL_STATES:
            run.history.append(state)
            next_state = await handlers[state](run)
            logger.debug("[req=%s] %s -> %s", context.request_id, state.value, next_state.value)
            state = next_state
        run.history.append(state)
        logger.info("[req=%s] Path: %s", context.request_id, " -> ".join(s.value for s in run.history))

        if state is EngineState.FAILURE:
            logger.error(
                "[req=%s] Analysis failed: %s (%d provider(s) attempted)",
                context.request_id, EXHAUSTED_CAUSE, run.providers_attempted,
            )
            raise FallbackExhaustedError(EXHAUSTED_CAUSE, run.providers_attempted, request_id=context.request_id)
        return run.result

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    async def _attempt_full(self, run: _Run) -> EngineState:
        run.fanout = await self._coordinator.execute_all(run.context, self.config.provider_targets)
        if run.fanout.successes:
            return EngineState.AGGREGATE
        logger.warning(
            "[req=%s] All %d provider(s) failed; switching to fallback %s",
            run.context.request_id, run.fanout.attempted, self.config.fallback_target.label,
        )
        return EngineState.ATTEMPT_FALLBACK

    async def _aggregate(self, run: _Run) -> EngineState:
        successes = run.fanout.successes
        try:
            record = aggregate([o.payload for o in successes], strategy=self.merge_strategy)
        except AggregationEmptyError as e:
            logger.warning("[req=%s] Aggregation produced nothing (%s); switching to fallback", run.context.request_id, e)
            return EngineState.ATTEMPT_FALLBACK

        run.result = self._build_result(
            run,
            record,
            mode=ExecutionMode.MULTI_PROVIDER,
            contributors=[o.label for o in successes],
        )
        signer = run.context.signer
        if signer is not None:
            try:
                run.result.signature = signer.attest(run.result)
            except SigningUnavailableError as e:
                logger.warning("[req=%s] Signature omitted: %s", run.context.request_id, e)
        logger.info(
            "[req=%s] Multi-provider result: %d item(s) from %d provider(s), confidence %s",
            run.context.request_id, len(record.items), record.providers_used, record.confidence.value,
        )
        return EngineState.SUCCESS

    async def _attempt_fallback(self, run: _Run) -> EngineState:
        target = self.config.fallback_target
        context = run.context
        try:
            outcome = await asyncio.wait_for(
                self._invoker.invoke(
                    target,
                    context.credential_for(target.provider),
                    context.image_base64,
                    request_id=context.request_id,
                ),
                timeout=self.config.timeout_secs,
            )
        except asyncio.TimeoutError:
            outcome = ProviderOutcome(
                provider=target.provider,
                model=target.model,
                error=f"Timeout after {self.config.timeout_secs}s",
                error_type="ProviderTransportError",
            )
        except Exception as e:
            logger.exception("[req=%s] Unexpected error from fallback %s", context.request_id, target.label)
            outcome = ProviderOutcome(
                provider=target.provider,
                model=target.model,
                error=str(e),
                error_type=type(e).__name__,
            )
        run.fallback = outcome
        if not outcome.success:
            return EngineState.FAILURE

        try:
            record = aggregate([outcome.payload])
        except AggregationEmptyError:
            return EngineState.FAILURE
        record.confidence = Confidence.LOW
        record.providers_used = 1
        run.result = self._build_result(
            run,
            record,
            mode=ExecutionMode.SINGLE_PROVIDER_FALLBACK,
            contributors=[outcome.label],
        )
        logger.warning("[req=%s] Using fallback result from %s", context.request_id, outcome.label)
        return EngineState.SUCCESS

    def _build_result(
        self,
        run: _Run,
        record: AggregatedRecord,
        mode: ExecutionMode,
        contributors: List[str],
    ) -> AnalysisResult:
        return AnalysisResult(
            items=record.items,
            totals=record.totals,
            providers_used=record.providers_used,
            confidence=record.confidence,
            mode=mode,
            timestamp=int(time.time() * 1000),
            request_id=run.context.request_id,
            providers_attempted=run.providers_attempted,
            contributors=contributors,
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "providers": [t.label for t in self.config.provider_targets],
            "fallback": self.config.fallback_target.label,
            "mergeStrategy": self.merge_strategy.value,
            "signing": self.signing_enabled,
        }
