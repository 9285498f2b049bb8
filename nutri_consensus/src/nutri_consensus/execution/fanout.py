"""Settle-all fan-out: every provider call runs to completion or failure."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from ..invoker import ProviderInvoker
from ..models import ProviderOutcome, ProviderTarget, RequestContext

logger = logging.getLogger(__name__)


@dataclass
class FanOutResult:
    """Outcomes of one fan-out, split by success."""
    successes: List[ProviderOutcome] = field(default_factory=list)
    failures: List[ProviderOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class FanOutCoordinator:
    """Dispatches the same request to N providers concurrently."""

    def __init__(self, invoker: ProviderInvoker, timeout_secs: float = 30.0):
        self.invoker = invoker
        self.timeout_secs = timeout_secs

    async def _call(self, context: RequestContext, target: ProviderTarget) -> ProviderOutcome:
        try:
            return await asyncio.wait_for(
                self.invoker.invoke(
                    target,
                    context.credential_for(target.provider),
                    context.image_base64,
                    request_id=context.request_id,
                ),
                timeout=self.timeout_secs,
            )
        except asyncio.TimeoutError:
            logger.warning("[req=%s] Provider %s timed out after %.1fs", context.request_id, target.label, self.timeout_secs)
            return ProviderOutcome(
                provider=target.provider,
                model=target.model,
                error=f"Timeout after {self.timeout_secs}s",
                error_type="ProviderTransportError",
            )
        except Exception as e:
            logger.exception("[req=%s] Unexpected error from %s", context.request_id, target.label)
            return ProviderOutcome(
                provider=target.provider,
                model=target.model,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def execute_all(self, context: RequestContext, targets: Sequence[ProviderTarget]) -> FanOutResult:
        """
        Execute the request on all targets in parallel and collect every outcome.

        Args:
            context: The caller's request context
            targets: Provider/model pairs to dispatch to

        Returns:
            FanOutResult with successes and failures. Zero successes is a
            normal result here; the engine decides what to do with it.
        """
        if not targets:
            return FanOutResult()

        tasks = [asyncio.create_task(self._call(context, t)) for t in targets]
        try:
            outcomes = await asyncio.gather(*tasks)
        finally:
            # Cancel remaining tasks if the caller went away
            for task in tasks:
                if not task.done():
                    task.cancel()

        result = FanOutResult()
        for outcome in outcomes:
            if outcome.success:
                result.successes.append(outcome)
            else:
                result.failures.append(outcome)
        logger.info(
            "[req=%s] Fan-out finished: %d/%d provider(s) succeeded",
            context.request_id, len(result.successes), result.attempted,
        )
        return result
