"""Provider fallback and tool-use rounds for one exchange.

Candidates are tried in order: the explicitly requested provider, then the
configured fallback chain, each id at most once. Transport errors, provider
errors, timeouts and malformed or empty responses advance to the next
candidate. Once a provider has answered, its tool calls are executed and the
results are resubmitted to that same provider; tools are never re-run against
a different backend.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence

from assist_gateway.agent.tool_executor import ToolExecutionWrapper
from assist_gateway.domain.contracts import ProviderAdapter
from assist_gateway.domain.models import (
    ChatMessage,
    ExecutionMode,
    NormalizedRequest,
    NormalizedResponse,
    Operation,
    ToolCall,
    ToolResult,
    Usage,
)
from assist_gateway.errors import (
    ExchangeCancelled,
    GatewayError,
    ProviderChainExhausted,
    ProviderError,
    TimeoutExceeded,
    TransportFailure,
)
from assist_gateway.observability.structured_log import log_json
from assist_gateway.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

_ADVANCE_ERRORS = (TransportFailure, ProviderError, TimeoutExceeded)


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExchangeCancelled("exchange cancelled")


@dataclass(frozen=True)
class OperationOutcome:
    operation: Operation
    result: ToolResult

    @property
    def ok(self) -> bool:
        return not self.result.is_error


def candidate_order(explicit: Optional[str], chain: Iterable[str]) -> List[str]:
    order: List[str] = []
    for name in [explicit or "", *chain]:
        key = (name or "").strip().lower()
        if key and key not in order:
            order.append(key)
    return order


class Orchestrator:
    def __init__(
        self,
        providers: ProviderRegistry,
        executor: ToolExecutionWrapper,
        fallback_chain: Sequence[str] = (),
        max_tool_rounds: int = 1,
        resubmit_tool_results: bool = True,
        request_timeout_sec: Optional[float] = None,
    ) -> None:
        self._providers = providers
        self._executor = executor
        self._chain = tuple(fallback_chain)
        self._max_tool_rounds = max(1, int(max_tool_rounds))
        self._resubmit = bool(resubmit_tool_results)
        self._request_timeout_sec = request_timeout_sec

    @property
    def executor(self) -> ToolExecutionWrapper:
        return self._executor

    async def run_exchange(
        self,
        request: NormalizedRequest,
        mode: ExecutionMode = ExecutionMode.DIRECT,
        cancel_token: Optional[CancellationToken] = None,
    ) -> NormalizedResponse:
        explicit = (request.provider or "").strip().lower() or None
        attempts: List[str] = []
        last_error: Optional[GatewayError] = None

        for name in candidate_order(explicit, self._chain):
            _check(cancel_token)
            adapter = self._providers.get(name)
            if adapter is None:
                log_json(logger, "provider.attempt.skipped", level=logging.DEBUG, provider=name, reason="unregistered")
                continue
            attempts.append(name)
            # A requested model only makes sense for the provider it was requested for.
            candidate_request = request if explicit in (None, name) else replace(request, model=None)
            log_json(logger, "provider.attempt.start", provider=name, attempt=len(attempts))
            try:
                response = await self._attempt(adapter, candidate_request)
            except _ADVANCE_ERRORS as exc:
                last_error = exc
                log_json(
                    logger,
                    "provider.attempt.failed",
                    level=logging.WARNING,
                    provider=name,
                    error=exc.code,
                    message=exc.message,
                )
                continue
            log_json(
                logger,
                "provider.attempt.success",
                provider=name,
                model=response.model,
                tool_calls=len(response.tool_calls),
            )
            return await self._run_tool_rounds(name, adapter, candidate_request, response, mode, cancel_token)

        log_json(logger, "exchange.exhausted", level=logging.ERROR, attempts=attempts)
        raise ProviderChainExhausted(attempts, last_error)

    async def execute_approved(self, cancel_token: Optional[CancellationToken] = None) -> List[OperationOutcome]:
        _check(cancel_token)
        outcomes: List[OperationOutcome] = []
        for op in self._executor.queue.drain_approved():
            result = await self._executor.execute_operation(op)
            outcomes.append(OperationOutcome(operation=op, result=result))
        return outcomes

    async def _attempt(self, adapter: ProviderAdapter, request: NormalizedRequest) -> NormalizedResponse:
        payload = adapter.build_request(request)
        raw = await adapter.send(payload, timeout_sec=self._request_timeout_sec)
        try:
            response = adapter.parse_response(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ProviderError(f"malformed response: {type(exc).__name__}: {exc}") from exc
        if not response.text and not response.tool_calls:
            raise ProviderError("empty response (no text and no tool calls)")
        return response

    async def _run_tool_rounds(
        self,
        name: str,
        adapter: ProviderAdapter,
        request: NormalizedRequest,
        response: NormalizedResponse,
        mode: ExecutionMode,
        cancel_token: Optional[CancellationToken],
    ) -> NormalizedResponse:
        usage: Usage = response.usage
        cost = response.cost or 0.0
        calls: List[ToolCall] = list(response.tool_calls)
        results: List[ToolResult] = []
        text = response.text
        model = response.model
        current = response
        current_request = request
        rounds = 0

        while current.tool_calls and rounds < self._max_tool_rounds:
            _check(cancel_token)
            round_results = [await self._executor.execute(call, mode) for call in current.tool_calls]
            results.extend(round_results)
            rounds += 1
            log_json(
                logger,
                "exchange.tool_round",
                provider=name,
                round=rounds,
                tools=[call.name for call in current.tool_calls],
                errors=sum(1 for r in round_results if r.is_error),
            )
            if not self._resubmit:
                break
            _check(cancel_token)
            current_request = replace(
                current_request,
                messages=current_request.messages
                + (
                    ChatMessage(role="assistant", content=current.text or "", tool_calls=current.tool_calls),
                    ChatMessage(role="user", tool_results=tuple(round_results)),
                ),
            )
            try:
                current = await self._attempt(adapter, current_request)
            except _ADVANCE_ERRORS as exc:
                log_json(
                    logger,
                    "provider.followup.failed",
                    level=logging.WARNING,
                    provider=name,
                    round=rounds,
                    error=exc.code,
                    message=exc.message,
                )
                break
            usage = usage + current.usage
            cost += current.cost or 0.0
            calls.extend(current.tool_calls)
            if current.text:
                text = current.text
            model = current.model

        return NormalizedResponse(
            text=text,
            tool_calls=tuple(calls),
            usage=usage,
            cost=cost,
            model=model,
            provider=name,
            tool_results=tuple(results),
        )


def _check(cancel_token: Optional[CancellationToken]) -> None:
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
