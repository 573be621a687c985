from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from assist_gateway.domain.models import Usage


@dataclass(frozen=True)
class ProviderRate:
    input_rate_per_1k: float = 0.0
    output_rate_per_1k: float = 0.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProviderRate":
        return cls(
            input_rate_per_1k=max(0.0, float(data.get("input_rate_per_1k") or 0.0)),
            output_rate_per_1k=max(0.0, float(data.get("output_rate_per_1k") or 0.0)),
        )

    def to_dict(self) -> Dict[str, float]:
        return {"input_rate_per_1k": self.input_rate_per_1k, "output_rate_per_1k": self.output_rate_per_1k}


def normalize_usage(usage: Optional[Mapping[str, Any]]) -> Usage:
    u = usage or {}
    prompt = _as_int(u.get("prompt_tokens") or u.get("input_tokens"))
    completion = _as_int(u.get("completion_tokens") or u.get("output_tokens"))
    total = _as_int(u.get("total_tokens")) or (prompt + completion)
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def compute_cost(usage: Usage, rate: Optional[ProviderRate]) -> float:
    if rate is None:
        return 0.0
    return (usage.prompt_tokens / 1000.0) * rate.input_rate_per_1k + (
        usage.completion_tokens / 1000.0
    ) * rate.output_rate_per_1k


def cost_for_provider(provider: str, usage: Usage, rates: Mapping[str, ProviderRate]) -> float:
    return compute_cost(usage, rates.get(provider))


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0
