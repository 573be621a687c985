"""OpenAI-style chat-completions adapter.

Used for every backend in the function-call family (OpenAI, OpenRouter,
DeepSeek). Tool calls arrive as ``message.tool_calls`` with JSON-encoded
``arguments``; results go back as ``role=tool`` messages keyed by
``tool_call_id`` after the assistant message that requested them.
"""
from __future__ import annotations

import json
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

_DEFAULT_TIMEOUT_SEC = 120

# provider id -> (base url, default model, extra headers)
KNOWN_ENDPOINTS: Dict[str, tuple[str, str, Dict[str, str]]] = {
    "openai": ("https://api.openai.com/v1", "gpt-4o-mini", {}),
    "openrouter": (
        "https://openrouter.ai/api/v1",
        "anthropic/claude-3.5-sonnet",
        {"HTTP-Referer": "https://github.com/assist-gateway/assist-gateway", "X-Title": "assist-gateway"},
    ),
    "deepseek": ("https://api.deepseek.com/v1", "deepseek-chat", {}),
}


def _normalize_base_url(value: str) -> str:
    return (value or "").strip().rstrip("/")


class OpenAICompatibleProvider:
    """Generic OpenAI-compatible chat-completions provider."""

    def __init__(
        self,
        provider_name: str,
        api_key: str = "",
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        rate: Optional[ProviderRate] = None,
        extra_headers: Optional[Mapping[str, str]] = None,
        max_retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        default_base, default_model, default_headers = KNOWN_ENDPOINTS.get(provider_name, ("", "", {}))
        self.name = provider_name
        self._api_key = (api_key or "").strip()
        self._model = (model or default_model).strip()
        self._base_url = _normalize_base_url(base_url or default_base)
        self._timeout_sec = float(timeout_sec or _DEFAULT_TIMEOUT_SEC)
        self._rate = rate
        self._extra_headers = dict(default_headers)
        self._extra_headers.update(extra_headers or {})
        self._max_retries = max(1, int(max_retries))
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def model(self) -> str:
        return self._model

    def build_request(self, request: NormalizedRequest) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = []
        for msg in request.messages:
            messages.extend(_convert_message(msg))
        system = _join_system(request.system)
        if system and not any(m.get("role") == "system" for m in messages):
            messages.insert(0, {"role": "system", "content": system})

        payload: Dict[str, Any] = {
            "model": request.model or self._model,
            "max_tokens": int(request.max_tokens),
            "messages": messages,
        }
        if request.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": spec.name,
                        "description": spec.description,
                        "parameters": dict(spec.input_schema),
                    },
                }
                for spec in request.tools
            ]
            if request.tool_choice is not None:
                payload["tool_choice"] = _convert_tool_choice(request.tool_choice)
        return payload

    async def send(self, payload: Dict[str, Any], timeout_sec: Optional[float] = None) -> Dict[str, Any]:
        if not self._api_key:
            raise ProviderError(f"{self.name}: API key not configured")
        if not self._base_url:
            raise ProviderError(f"{self.name}: base URL not configured")
        log_json(logger, "provider.request", provider=self.name, model=payload.get("model"))
        return await post_json_with_retries(
            self._get_http_client(),
            path="/chat/completions",
            payload=payload,
            attempts=self._max_retries,
            timeout_sec=timeout_sec,
        )

    def parse_response(self, raw: Mapping[str, Any]) -> NormalizedResponse:
        choices = raw.get("choices") if isinstance(raw, Mapping) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], Mapping):
            raise ProviderError(f"{self.name}: malformed response (no choices)")
        message = choices[0].get("message")
        if not isinstance(message, Mapping):
            raise ProviderError(f"{self.name}: malformed response (no message)")

        text = message.get("content")
        calls: List[ToolCall] = []
        for tc in message.get("tool_calls") or []:
            if not isinstance(tc, Mapping):
                continue
            func = tc.get("function") or {}
            if not isinstance(func, Mapping):
                continue
            calls.append(
                ToolCall(
                    id=str(tc.get("id") or ""),
                    name=str(func.get("name") or ""),
                    input=_decode_arguments(func.get("arguments")),
                )
            )
        usage = normalize_usage(raw.get("usage"))
        return NormalizedResponse(
            text=text if isinstance(text, str) and text else None,
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
            headers = {
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            }
            headers.update(self._extra_headers)
            self._http_client = build_httpx_client(
                base_url=self._base_url,
                headers=headers,
                connect_timeout_sec=min(10.0, self._timeout_sec),
                read_timeout_sec=self._timeout_sec,
                transport=self._transport,
            )
        return self._http_client


def _convert_message(msg: ChatMessage) -> List[Dict[str, Any]]:
    if msg.tool_results:
        out = [
            {"role": "tool", "tool_call_id": result.tool_use_id, "content": json_text(result.content)}
            for result in msg.tool_results
        ]
        if msg.content:
            out.append({"role": "user", "content": msg.content})
        return out
    if msg.tool_calls:
        return [
            {
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(dict(call.input))},
                    }
                    for call in msg.tool_calls
                ],
            }
        ]
    role = msg.role if msg.role in {"system", "user", "assistant"} else "user"
    return [{"role": role, "content": msg.content}]


def _join_system(system: Any) -> str:
    if isinstance(system, str):
        return system
    parts: List[str] = []
    for segment in system or []:
        if isinstance(segment, Mapping):
            text = segment.get("text")
            if isinstance(text, str) and text:
                parts.append(text)
        elif str(segment):
            parts.append(str(segment))
    return "\n\n".join(parts)


def _convert_tool_choice(choice: Any) -> Any:
    if isinstance(choice, Mapping):
        if choice.get("type") == "tool" and choice.get("name"):
            return {"type": "function", "function": {"name": choice["name"]}}
        if choice.get("type") == "any":
            return "required"
        return dict(choice)
    text = str(choice)
    if text in {"auto", "none", "required"}:
        return text
    if text == "any":
        return "required"
    return {"type": "function", "function": {"name": text}}


def _decode_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if raw is None or raw == "":
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return {"_raw": str(raw)}
    if not isinstance(decoded, dict):
        return {"_raw": str(raw)}
    return decoded
