from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from assist_gateway.domain.models import NormalizedRequest, NormalizedResponse


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


class ProviderAdapter(Protocol):
    name: str

    def build_request(self, request: NormalizedRequest) -> Dict[str, Any]:
        ...

    async def send(self, payload: Dict[str, Any], timeout_sec: Optional[float] = None) -> Dict[str, Any]:
        ...

    def parse_response(self, raw: Dict[str, Any]) -> NormalizedResponse:
        ...

    async def aclose(self) -> None:
        ...
