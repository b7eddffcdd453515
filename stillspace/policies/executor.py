"""
Policy executor: classify a request, run the matching strategy, record the outcome.
"""
import time
from dataclasses import dataclass
from typing import Dict, Optional

from stillspace.fetch.models import RequestInfo, Response
from stillspace.policies.strategies import (
    PolicyContext,
    PolicyResult,
    Source,
    Strategy,
    cache_first_pass_through,
    cache_first_with_offline_fallback,
    cache_first_with_refill,
    network_first_with_offline_stub,
    network_only,
)
from stillspace.routing.classifier import RouteClass, RouteClassifier
from stillspace.utils.logger import get_logger

logger = get_logger("policies.executor")


DEFAULT_STRATEGIES: Dict[RouteClass, Strategy] = {
    RouteClass.AUDIO: cache_first_with_refill,
    RouteClass.STATIC: cache_first_pass_through,
    RouteClass.API: network_first_with_offline_stub,
    RouteClass.DOCUMENT: cache_first_with_offline_fallback,
    RouteClass.OTHER: network_only,
}


@dataclass
class ExecutionResult:
    """A served response plus how it was produced."""
    response: Response
    route_class: RouteClass
    source: Source
    strategy: str
    latency_ms: float

    @property
    def cache_hit(self) -> bool:
        return self.source == Source.CACHE


class PolicyExecutor:
    """
    Dispatches each request to the strategy for its route class.

    Args:
        context: Shared collaborators (config, storage, fetcher, detached tasks)
        classifier: Route classifier; built from the context config when omitted
        metrics: Optional MetricsCollector fed with every outcome
    """

    def __init__(
        self,
        context: PolicyContext,
        classifier: Optional[RouteClassifier] = None,
        metrics=None,
        strategies: Optional[Dict[RouteClass, Strategy]] = None,
    ):
        self.context = context
        self.classifier = classifier or RouteClassifier.from_config(context.config)
        self.metrics = metrics
        self.strategies = dict(strategies or DEFAULT_STRATEGIES)

    async def execute(self, request: RequestInfo) -> ExecutionResult:
        route_class = self.classifier.classify(request)
        strategy = self.strategies[route_class]
        return await self._run(request, route_class, strategy)

    async def pass_through(self, request: RequestInfo) -> ExecutionResult:
        """Serve without any caching, as an uncontrolled page would."""
        return await self._run(request, RouteClass.OTHER, network_only)

    async def _run(self, request: RequestInfo, route_class: RouteClass, strategy: Strategy) -> ExecutionResult:
        start = time.perf_counter()
        outcome: PolicyResult = await strategy(request, self.context)
        latency_ms = (time.perf_counter() - start) * 1000

        logger.debug(
            f"{request.method} {request.url} -> {route_class.value} "
            f"[{outcome.strategy}] {outcome.source.value} {outcome.response.status}"
        )
        if self.metrics is not None:
            self.metrics.record_request(
                route_class=route_class.value,
                source=outcome.source.value,
                status=outcome.response.status,
                latency_ms=latency_ms,
            )
        return ExecutionResult(
            response=outcome.response,
            route_class=route_class,
            source=outcome.source,
            strategy=outcome.strategy,
            latency_ms=latency_ms,
        )
