"""Anthropic Messages API adapter.

Anthropic uses rich content blocks: assistant turns carry ``tool_use`` blocks
and the answering user turn carries ``tool_result`` blocks keyed by the
originating ``tool_use_id``. ``system`` is a top-level field that accepts
either a string or a list of text blocks.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from assist_gateway.domain.models import ChatMessage, NormalizedRequest, NormalizedResponse, ToolCall
from assist_gateway.errors import ProviderError
from assist_gateway.observability.structured_log import log_json
from assist_gateway.providers.transport import build_httpx_client, post_json_with_retries
from assist_gateway.services.cost_tracking import ProviderRate, compute_cost, normalize_usage
from assist_gateway.util import json_text

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MODEL = "claude-3-5-sonnet-latest"
ANTHROPIC_VERSION = "2023-06-01"
_DEFAULT_TIMEOUT_SEC = 120


class AnthropicProvider:
    def __init__(
        self,
        api_key: str = "",
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        rate: Optional[ProviderRate] = None,
        max_retries: int = 1,
        name: str = "anthropic",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.name = name
        self._api_key = (api_key or "").strip()
        self._model = (model or DEFAULT_MODEL).strip()
        self._base_url = (base_url or DEFAULT_BASE_URL).strip().rstrip("/")
        self._timeout_sec = float(timeout_sec or _DEFAULT_TIMEOUT_SEC)
        self._rate = rate
        self._max_retries = max(1, int(max_retries))
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def model(self) -> str:
        return self._model

    def build_request(self, request: NormalizedRequest) -> Dict[str, Any]:
        system_segments: List[Any] = []
        messages: List[Dict[str, Any]] = []
        for msg in request.messages:
            if msg.role == "system":
                if msg.content:
                    system_segments.append(msg.content)
                continue
            messages.append(_convert_message(msg))

        payload: Dict[str, Any] = {
            "model": request.model or self._model,
            "max_tokens": int(request.max_tokens),
            "messages": messages,
        }
        system = _convert_system(request.system, system_segments)
        if system:
            payload["system"] = system
        if request.tools:
            payload["tools"] = [spec.to_dict() for spec in request.tools]
            if request.tool_choice is not None:
                payload["tool_choice"] = _convert_tool_choice(request.tool_choice)
        return payload

    async def send(self, payload: Dict[str, Any], timeout_sec: Optional[float] = None) -> Dict[str, Any]:
        if not self._api_key:
            raise ProviderError(f"{self.name}: API key not configured")
        log_json(logger, "provider.request", provider=self.name, model=payload.get("model"))
        return await post_json_with_retries(
            self._get_http_client(),
            path="/v1/messages",
            payload=payload,
            attempts=self._max_retries,
            timeout_sec=timeout_sec,
        )

    def parse_response(self, raw: Mapping[str, Any]) -> NormalizedResponse:
        blocks = raw.get("content") if isinstance(raw, Mapping) else None
        if not isinstance(blocks, list):
            raise ProviderError(f"{self.name}: malformed response (no content list)")
        texts: List[str] = []
        calls: List[ToolCall] = []
        for block in blocks:
            if not isinstance(block, Mapping):
                continue
            kind = block.get("type")
            if kind == "text" and isinstance(block.get("text"), str):
                texts.append(block["text"])
            elif kind == "tool_use":
                args = block.get("input")
                calls.append(
                    ToolCall(
                        id=str(block.get("id") or ""),
                        name=str(block.get("name") or ""),
                        input=dict(args) if isinstance(args, Mapping) else {},
                    )
                )
        usage = normalize_usage(raw.get("usage"))
        text = "".join(texts)
        return NormalizedResponse(
            text=text or None,
            tool_calls=tuple(calls),
            usage=usage,
            cost=compute_cost(usage, self._rate),
            model=str(raw.get("model") or self._model),
            provider=self.name,
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = build_httpx_client(
                base_url=self._base_url,
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
                connect_timeout_sec=min(10.0, self._timeout_sec),
                read_timeout_sec=self._timeout_sec,
                transport=self._transport,
            )
        return self._http_client


def _convert_message(msg: ChatMessage) -> Dict[str, Any]:
    if msg.tool_results:
        blocks: List[Dict[str, Any]] = []
        for result in msg.tool_results:
            block: Dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": result.tool_use_id,
                "content": json_text(result.content),
            }
            if result.is_error:
                block["is_error"] = True
            blocks.append(block)
        if msg.content:
            blocks.append({"type": "text", "text": msg.content})
        return {"role": "user", "content": blocks}
    if msg.tool_calls:
        blocks = []
        if msg.content:
            blocks.append({"type": "text", "text": msg.content})
        for call in msg.tool_calls:
            blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": dict(call.input)})
        return {"role": "assistant", "content": blocks}
    role = "assistant" if msg.role == "assistant" else "user"
    return {"role": role, "content": msg.content}


def _convert_system(system: Any, extra: List[Any]) -> Any:
    if isinstance(system, str):
        segments: List[Any] = [system] if system else []
    else:
        segments = list(system or [])
    segments.extend(extra)
    if not segments:
        return ""
    if len(segments) == 1 and isinstance(segments[0], str):
        return segments[0]
    blocks = []
    for segment in segments:
        if isinstance(segment, Mapping):
            blocks.append(dict(segment))
        elif str(segment):
            blocks.append({"type": "text", "text": str(segment)})
    return blocks


def _convert_tool_choice(choice: Any) -> Dict[str, Any]:
    if isinstance(choice, Mapping):
        return dict(choice)
    text = str(choice)
    if text in {"auto", "any", "none"}:
        return {"type": text}
    if text == "required":
        return {"type": "any"}
    return {"type": "tool", "name": text}
