import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from assist_gateway.agent.orchestrator import Orchestrator
from assist_gateway.agent.tool_executor import ToolExecutionWrapper
from assist_gateway.approvals.queue import ApprovalQueue
from assist_gateway.config import GatewayConfig
from assist_gateway.domain.models import SandboxPolicy
from assist_gateway.execution.diff_engine import DiffEngine
from assist_gateway.execution.local_shell import LocalShellRunner
from assist_gateway.observability.structured_log import log_json
from assist_gateway.providers.anthropic_provider import AnthropicProvider
from assist_gateway.providers.openai_compatible import OpenAICompatibleProvider
from assist_gateway.providers.registry import ProviderRegistry
from assist_gateway.sandbox.paths import PathResolver
from assist_gateway.sandbox.terminal import TerminalPolicyEngine
from assist_gateway.tools import build_default_tool_registry
from assist_gateway.tools.base import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Gateway:
    config: GatewayConfig
    policy: SandboxPolicy
    resolver: PathResolver
    terminal_policy: TerminalPolicyEngine
    runner: LocalShellRunner
    diff_engine: DiffEngine
    tools: ToolRegistry
    queue: ApprovalQueue
    executor: ToolExecutionWrapper
    providers: ProviderRegistry
    orchestrator: Orchestrator

    async def aclose(self) -> None:
        await self.providers.aclose()


def build_provider_registry(
    config: GatewayConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRegistry:
    registry = ProviderRegistry()
    for name, settings in config.providers.items():
        rate = config.rates.get(name)
        if name == "anthropic":
            provider = AnthropicProvider(
                api_key=settings.api_key,
                model=settings.model or None,
                base_url=settings.base_url or None,
                timeout_sec=settings.timeout_sec,
                rate=rate,
                transport=transport,
            )
        else:
            provider = OpenAICompatibleProvider(
                provider_name=name,
                api_key=settings.api_key,
                model=settings.model or None,
                base_url=settings.base_url or None,
                timeout_sec=settings.timeout_sec,
                rate=rate,
                transport=transport,
            )
        registry.register(name, provider)
    return registry


def build_gateway(
    config: GatewayConfig,
    providers: Optional[ProviderRegistry] = None,
    queue: Optional[ApprovalQueue] = None,
) -> Gateway:
    policy = config.sandbox_policy()
    resolver = PathResolver(policy.workspace_root)
    terminal_policy = TerminalPolicyEngine.from_policy(policy)
    runner = LocalShellRunner(resolver, terminal_policy, default_timeout_sec=config.command_timeout_sec)
    diff_engine = DiffEngine(resolver, patch_command=config.patch_command)
    tools = build_default_tool_registry(resolver, runner, diff_engine)
    approval_queue = queue or ApprovalQueue()
    executor = ToolExecutionWrapper(tools, approval_queue)
    provider_registry = providers if providers is not None else build_provider_registry(config)
    orchestrator = Orchestrator(
        provider_registry,
        executor,
        fallback_chain=config.fallback_chain,
        max_tool_rounds=config.max_tool_rounds,
        resubmit_tool_results=config.resubmit_tool_results,
    )
    log_json(
        logger,
        "gateway.built",
        workspace_root=str(resolver.root),
        tools=tools.names(),
        providers=provider_registry.names(),
        approval_mode=config.approval_mode.value,
    )
    return Gateway(
        config=config,
        policy=policy,
        resolver=resolver,
        terminal_policy=terminal_policy,
        runner=runner,
        diff_engine=diff_engine,
        tools=tools,
        queue=approval_queue,
        executor=executor,
        providers=provider_registry,
        orchestrator=orchestrator,
    )
