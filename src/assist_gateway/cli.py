import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Callable, List, Optional

from assist_gateway.agent.orchestrator import CancellationToken
from assist_gateway.app_container import Gateway, build_gateway
from assist_gateway.approvals.queue import summarize
from assist_gateway.config import GatewayConfig, load_config
from assist_gateway.domain.models import ExecutionMode, NormalizedRequest, NormalizedResponse
from assist_gateway.errors import ExchangeCancelled, GatewayError
from assist_gateway.util import json_text

API_TOKEN_ENV = "ASSIST_API_TOKEN"


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_log_level(args: argparse.Namespace, config: GatewayConfig) -> str:
    return (args.log_level or config.log_level or "INFO").upper()


def _install_interrupt(token: CancellationToken) -> bool:
    """Route Ctrl-C to ``token`` for the running loop; False where signals are unsupported."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _print_config(gateway: Gateway) -> None:
    print(json.dumps(gateway.config.summary(), indent=2, sort_keys=True))


def _print_response(response: NormalizedResponse) -> None:
    if response.text:
        print(response.text)
    for result in response.tool_results:
        marker = "error" if result.is_error else "ok"
        print(f"[tool {result.tool_use_id} {marker}] {json_text(result.content)}")
    cost = f"{response.cost:.6f}" if response.cost is not None else "n/a"
    print(
        f"-- {response.provider}/{response.model} "
        f"tokens={response.usage.total_tokens} cost={cost}",
        file=sys.stderr,
    )


def _review_pending(gateway: Gateway, prompt: Callable[[str], str] = input) -> None:
    for op in gateway.queue.pending():
        answer = prompt(f"Approve operation {op.id} ({op.kind.value}: {summarize(op)})? [y/N] ")
        if answer.strip().lower() in {"y", "yes"}:
            gateway.queue.approve(op.id)
        else:
            gateway.queue.reject(op.id)


async def _ask(
    gateway: Gateway,
    args: argparse.Namespace,
    prompt: Callable[[str], str] = input,
    token: Optional[CancellationToken] = None,
) -> int:
    mode = ExecutionMode.GATED if args.gated else gateway.config.approval_mode
    request = NormalizedRequest.from_prompt(
        args.prompt,
        system=args.system or "",
        tools=() if args.no_tools else tuple(gateway.tools.specs()),
        max_tokens=gateway.config.max_tokens,
        provider=args.provider,
        model=args.model,
    )
    token = token or CancellationToken()
    interruptible = _install_interrupt(token)
    try:
        response = await gateway.orchestrator.run_exchange(request, mode=mode, cancel_token=token)
        _print_response(response)
        if mode is ExecutionMode.GATED and gateway.queue.pending():
            print(gateway.queue.format_list())
            await asyncio.to_thread(_review_pending, gateway, prompt)
            for outcome in await gateway.orchestrator.execute_approved(cancel_token=token):
                marker = "ok" if outcome.ok else "error"
                print(f"[operation {outcome.operation.id} {marker}] {json_text(outcome.result.content)}")
            gateway.queue.clear_completed()
    finally:
        if interruptible:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        await gateway.aclose()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sandboxed tool gateway for LLM coding assistants")
    parser.add_argument(
        "--config-dir",
        default=None,
        help="Directory holding config.json and .env (default: ~/.config/assist-gateway)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument("--log-level", default=None, help="Overrides log_level from config.json, .env or LOG_LEVEL")
    sub = parser.add_subparsers(dest="command")

    ask = sub.add_parser("ask", help="Run one exchange against the provider chain")
    ask.add_argument("prompt")
    ask.add_argument("--provider", default=None, help="Provider to try first")
    ask.add_argument("--model", default=None, help="Model override for the requested provider")
    ask.add_argument("--system", default=None, help="System prompt")
    ask.add_argument("--gated", action="store_true", help="Queue mutating tools for approval")
    ask.add_argument("--no-tools", action="store_true", help="Do not offer tools to the model")

    serve = sub.add_parser("serve", help="Run the operation review API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8765)

    sub.add_parser("tools", help="List registered tools")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(Path(args.config_dir) if args.config_dir else None)
    except GatewayError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2
    log_level = _resolve_log_level(args, config)
    _configure_logging(log_level)

    try:
        gateway = build_gateway(config)
    except GatewayError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2

    if args.print_config:
        _print_config(gateway)
        return 0

    if args.command == "tools":
        for spec in gateway.tools.specs():
            print(f"{spec.name}: {spec.description}")
        return 0

    if args.command == "serve":
        from assist_gateway.control_center.app import create_app
        import uvicorn

        app = create_app(gateway, api_token=os.environ.get(API_TOKEN_ENV))
        uvicorn.run(app, host=args.host, port=args.port, log_level=log_level.lower())
        return 0

    if args.command == "ask":
        try:
            return asyncio.run(_ask(gateway, args))
        except ExchangeCancelled:
            print("Cancelled.", file=sys.stderr)
            return 130
        except GatewayError as exc:
            print(f"Error: {exc.message}", file=sys.stderr)
            return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
