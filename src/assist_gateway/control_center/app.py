import secrets
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from assist_gateway import __version__
from assist_gateway.app_container import Gateway
from assist_gateway.domain.models import ExecutionMode, NormalizedRequest, NormalizedResponse
from assist_gateway.errors import InvalidTransition, OperationNotFound, ProviderChainExhausted


class OperationStatusResponse(BaseModel):
    id: int
    kind: str
    status: str


class ClearResponse(BaseModel):
    cleared: int


class OperationOutcomeResponse(BaseModel):
    operation_id: int
    kind: str
    tool_use_id: str
    ok: bool
    content: Any = None


class ExchangeRequest(BaseModel):
    prompt: str
    system: str = ""
    provider: Optional[str] = None
    model: Optional[str] = None
    use_tools: bool = True


class ToolResultResponse(BaseModel):
    tool_use_id: str
    is_error: bool = False
    content: Any = None


class ExchangeResponse(BaseModel):
    text: Optional[str] = None
    provider: str
    model: str
    usage: Dict[str, int]
    cost: Optional[float] = None
    tool_results: List[ToolResultResponse]
    pending_operation_ids: List[int]


def _pending_ids(response: NormalizedResponse) -> List[int]:
    ids = []
    for result in response.tool_results:
        if isinstance(result.content, dict) and result.content.get("pending"):
            ids.append(int(result.content["operation_id"]))
    return ids


def create_app(gateway: Gateway, api_token: Optional[str] = None) -> FastAPI:
    """Build the operation review API.

    ``POST /api/exchange`` runs gated exchanges on this same gateway, so the
    operations it queues are the ones the review routes list and resolve.

    When ``api_token`` is set every ``/api/*`` request must carry it as a
    bearer token (or ``x-api-key`` header).
    """
    app = FastAPI(title="Assist Gateway", version=__version__)
    queue = gateway.queue
    token = (api_token or "").strip()

    def _require_token(request: Request) -> None:
        if not token:
            return
        bearer = (request.headers.get("authorization") or "").strip()
        supplied = bearer[7:].strip() if bearer.lower().startswith("bearer ") else ""
        supplied = supplied or (request.headers.get("x-api-key") or "").strip()
        if not supplied:
            raise HTTPException(status_code=401, detail="Missing API token.")
        if not secrets.compare_digest(supplied, token):
            raise HTTPException(status_code=401, detail="Invalid API token.")

    def _transition(op_id: int, approve: bool) -> OperationStatusResponse:
        try:
            op = queue.approve(op_id) if approve else queue.reject(op_id)
        except OperationNotFound as exc:
            raise HTTPException(status_code=404, detail=exc.message) from exc
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=exc.message) from exc
        return OperationStatusResponse(id=op.id, kind=op.kind.value, status=op.status.value)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "workspace_root": str(gateway.resolver.root),
            "providers": gateway.providers.names(),
            "pending_operations": len(queue.pending()),
        }

    @app.post("/api/exchange", response_model=ExchangeResponse)
    async def api_exchange(request: Request, body: ExchangeRequest) -> ExchangeResponse:
        _require_token(request)
        normalized = NormalizedRequest.from_prompt(
            body.prompt,
            system=body.system,
            tools=tuple(gateway.tools.specs()) if body.use_tools else (),
            max_tokens=gateway.config.max_tokens,
            provider=body.provider,
            model=body.model,
        )
        try:
            response = await gateway.orchestrator.run_exchange(normalized, mode=ExecutionMode.GATED)
        except ProviderChainExhausted as exc:
            raise HTTPException(status_code=502, detail=exc.message) from exc
        return ExchangeResponse(
            text=response.text,
            provider=response.provider,
            model=response.model,
            usage=response.usage.to_dict(),
            cost=response.cost,
            tool_results=[
                ToolResultResponse(tool_use_id=r.tool_use_id, is_error=r.is_error, content=r.content)
                for r in response.tool_results
            ],
            pending_operation_ids=_pending_ids(response),
        )

    @app.get("/api/operations")
    async def api_list_operations(request: Request) -> List[Dict[str, Any]]:
        _require_token(request)
        return [view.to_dict() for view in queue.list_operations()]

    @app.get("/api/operations/text")
    async def api_operations_text(request: Request) -> Dict[str, str]:
        _require_token(request)
        return {"text": queue.format_list()}

    @app.post("/api/operations/clear", response_model=ClearResponse)
    async def api_clear_operations(request: Request) -> ClearResponse:
        _require_token(request)
        return ClearResponse(cleared=queue.clear_completed())

    @app.post("/api/operations/execute", response_model=List[OperationOutcomeResponse])
    async def api_execute_operations(request: Request) -> List[OperationOutcomeResponse]:
        _require_token(request)
        outcomes = await gateway.orchestrator.execute_approved()
        return [
            OperationOutcomeResponse(
                operation_id=item.operation.id,
                kind=item.operation.kind.value,
                tool_use_id=item.result.tool_use_id,
                ok=item.ok,
                content=item.result.content,
            )
            for item in outcomes
        ]

    @app.post("/api/operations/{op_id}/approve", response_model=OperationStatusResponse)
    async def api_approve_operation(request: Request, op_id: int) -> OperationStatusResponse:
        _require_token(request)
        return _transition(op_id, approve=True)

    @app.post("/api/operations/{op_id}/reject", response_model=OperationStatusResponse)
    async def api_reject_operation(request: Request, op_id: int) -> OperationStatusResponse:
        _require_token(request)
        return _transition(op_id, approve=False)

    @app.get("/api/tools")
    async def api_tools(request: Request) -> Dict[str, Any]:
        _require_token(request)
        return {
            "names": gateway.tools.names(),
            "specs": [spec.to_dict() for spec in gateway.tools.specs()],
        }

    return app
