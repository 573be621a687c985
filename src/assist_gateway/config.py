"""Configuration loading.

Precedence, lowest first: built-in defaults, ``config.json`` in the config
directory, ``.env`` in the config directory (applied to the process
environment without overwriting existing values), then the environment.
The result is an immutable ``GatewayConfig``.
"""
import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple

from assist_gateway.domain.models import ExecutionMode, SandboxPolicy
from assist_gateway.errors import ConfigError
from assist_gateway.sandbox.terminal import DEFAULT_ALLOW, DEFAULT_DENY
from assist_gateway.services.cost_tracking import ProviderRate
from assist_gateway.util import coerce_bool, parse_csv

CONFIG_DIR_ENV = "ASSIST_CONFIG_DIR"
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "assist-gateway"
CONFIG_FILE_NAME = "config.json"

KNOWN_PROVIDERS: Tuple[str, ...] = ("anthropic", "openai", "openrouter", "deepseek")
DEFAULT_FALLBACK_CHAIN: Tuple[str, ...] = ("openrouter", "openai", "anthropic", "deepseek")
DEFAULT_PROVIDER_TIMEOUT_SEC = 120.0


@dataclass(frozen=True)
class ProviderSettings:
    name: str
    api_key: str = ""
    model: str = ""
    base_url: str = ""
    timeout_sec: float = DEFAULT_PROVIDER_TIMEOUT_SEC


@dataclass(frozen=True)
class GatewayConfig:
    config_dir: Path
    workspace_root: Path
    terminal_allow: Tuple[str, ...] = DEFAULT_ALLOW
    terminal_deny: Tuple[str, ...] = DEFAULT_DENY
    fallback_chain: Tuple[str, ...] = DEFAULT_FALLBACK_CHAIN
    providers: Mapping[str, ProviderSettings] = field(default_factory=lambda: MappingProxyType({}))
    rates: Mapping[str, ProviderRate] = field(default_factory=lambda: MappingProxyType({}))
    max_tool_rounds: int = 1
    resubmit_tool_results: bool = True
    command_timeout_sec: int = 30
    max_tokens: int = 1024
    patch_command: Optional[str] = None
    approval_mode: ExecutionMode = ExecutionMode.DIRECT
    log_level: str = "INFO"

    def sandbox_policy(self) -> SandboxPolicy:
        return SandboxPolicy(
            workspace_root=self.workspace_root,
            terminal_allow=self.terminal_allow,
            terminal_deny=self.terminal_deny,
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "config_dir": str(self.config_dir),
            "workspace_root": str(self.workspace_root),
            "terminal_allow": list(self.terminal_allow),
            "terminal_deny": list(self.terminal_deny),
            "fallback_chain": list(self.fallback_chain),
            "providers": {
                name: {
                    "api_key": "present" if settings.api_key else "absent",
                    "model": settings.model or "(default)",
                    "base_url": settings.base_url or "(default)",
                }
                for name, settings in sorted(self.providers.items())
            },
            "rates": {name: rate.to_dict() for name, rate in sorted(self.rates.items())},
            "max_tool_rounds": self.max_tool_rounds,
            "resubmit_tool_results": self.resubmit_tool_results,
            "command_timeout_sec": self.command_timeout_sec,
            "max_tokens": self.max_tokens,
            "patch_command": self.patch_command or "(in-process)",
            "approval_mode": self.approval_mode.value,
            "log_level": self.log_level,
        }


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip()
    except Exception as exc:
        print(f"Failed to read .env: {exc}", file=sys.stderr)
    return data


def apply_env_defaults(env_file: Dict[str, str], target_env: Optional[MutableMapping[str, str]] = None) -> int:
    """Populate missing process env vars from .env-style mapping.

    Existing environment values are never overwritten.
    Returns the number of keys applied.
    """
    target = target_env if target_env is not None else os.environ
    applied = 0
    for raw_key, raw_value in (env_file or {}).items():
        key = str(raw_key or "").strip()
        if not key:
            continue
        if key in target and str(target.get(key) or "").strip():
            continue
        target[key] = str(raw_value or "")
        applied += 1
    return applied


def resolve_config_dir(config_dir: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()
    raw = (env.get(CONFIG_DIR_ENV) or "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return DEFAULT_CONFIG_DIR


def load_config(
    config_dir: Optional[Path] = None,
    environ: Optional[MutableMapping[str, str]] = None,
) -> GatewayConfig:
    """Load configuration.

    ``environ`` defaults to ``os.environ``; pass a plain dict to keep tests
    away from the real process environment.
    """
    env = os.environ if environ is None else environ
    resolved_dir = resolve_config_dir(config_dir, env)
    apply_env_defaults(load_env_file(resolved_dir / ".env"), env)
    data = _load_json_config(resolved_dir / CONFIG_FILE_NAME)

    workspace_raw = _env(env, "ASSIST_WORKSPACE_ROOT") or _json_str(data, "workspace_root") or str(Path.cwd())
    workspace_root = Path(os.path.expandvars(workspace_raw)).expanduser().resolve()
    if not workspace_root.is_dir():
        raise ConfigError(f"workspace_root is not a directory: {workspace_root}")

    approval_raw = _env(env, "ASSIST_APPROVAL_MODE") or _json_str(data, "approval_mode") or ExecutionMode.DIRECT.value
    approval_mode = ExecutionMode.parse(approval_raw, default=None)
    if approval_mode.value != approval_raw.strip().lower():
        raise ConfigError(f"approval_mode must be 'direct' or 'gated', got '{approval_raw}'")

    patch_command = _env(env, "ASSIST_PATCH_COMMAND") or _json_str(data, "patch_command") or None

    return GatewayConfig(
        config_dir=resolved_dir,
        workspace_root=workspace_root,
        terminal_allow=_rule_list(env, data, "ASSIST_TERMINAL_ALLOW", "terminal_allow", DEFAULT_ALLOW),
        terminal_deny=_rule_list(env, data, "ASSIST_TERMINAL_DENY", "terminal_deny", DEFAULT_DENY),
        fallback_chain=_fallback_chain(env, data),
        providers=MappingProxyType(_provider_settings(env, data)),
        rates=MappingProxyType(_rates(data)),
        max_tool_rounds=_int_setting(env, data, "ASSIST_MAX_TOOL_ROUNDS", "max_tool_rounds", 1),
        resubmit_tool_results=_bool_setting(env, data, "ASSIST_RESUBMIT_TOOL_RESULTS", "resubmit_tool_results", True),
        command_timeout_sec=_int_setting(env, data, "ASSIST_COMMAND_TIMEOUT_SEC", "command_timeout_sec", 30),
        max_tokens=_int_setting(env, data, "ASSIST_MAX_TOKENS", "max_tokens", 1024),
        patch_command=patch_command,
        approval_mode=approval_mode,
        log_level=(_env(env, "LOG_LEVEL") or _json_str(data, "log_level") or "INFO").upper(),
    )


def _load_json_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8") or "{}")
    except (OSError, ValueError) as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data


def _env(env: Mapping[str, str], key: str) -> Optional[str]:
    value = env.get(key)
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def _json_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"'{key}' must be a string")
    return value.strip() or None


def _rule_list(
    env: Mapping[str, str],
    data: Mapping[str, Any],
    env_key: str,
    json_key: str,
    default: Tuple[str, ...],
) -> Tuple[str, ...]:
    # Only leading whitespace is dropped: "sudo " relies on its trailing space.
    if env_key in env:
        items: List[str] = [part.lstrip() for part in str(env[env_key]).split(",")]
        return tuple(item for item in items if item.strip())
    if json_key in data:
        value = data[json_key]
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise ConfigError(f"'{json_key}' must be a list of strings")
        return tuple(item.lstrip() for item in value if item.strip())
    return tuple(default)


def _fallback_chain(env: Mapping[str, str], data: Mapping[str, Any]) -> Tuple[str, ...]:
    raw = _env(env, "ASSIST_FALLBACK_CHAIN")
    if raw is not None:
        items = parse_csv(raw)
    elif "fallback_chain" in data:
        value = data["fallback_chain"]
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise ConfigError("'fallback_chain' must be a list of strings")
        items = [item.strip() for item in value if item.strip()]
    else:
        items = list(DEFAULT_FALLBACK_CHAIN)
    return tuple(item.lower() for item in items)


def _provider_settings(env: Mapping[str, str], data: Mapping[str, Any]) -> Dict[str, ProviderSettings]:
    section = data.get("providers", {})
    if not isinstance(section, dict):
        raise ConfigError("'providers' must be an object")
    names = list(KNOWN_PROVIDERS) + [str(k).lower() for k in section.keys() if str(k).lower() not in KNOWN_PROVIDERS]
    out: Dict[str, ProviderSettings] = {}
    for name in names:
        entry = section.get(name, {})
        if not isinstance(entry, dict):
            raise ConfigError(f"'providers.{name}' must be an object")
        prefix = name.upper()
        timeout_raw = entry.get("timeout_sec", DEFAULT_PROVIDER_TIMEOUT_SEC)
        try:
            timeout_sec = float(timeout_raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"'providers.{name}.timeout_sec' must be a number") from exc
        out[name] = ProviderSettings(
            name=name,
            api_key=_env(env, f"{prefix}_API_KEY") or _json_str(entry, "api_key") or "",
            model=_env(env, f"{prefix}_MODEL") or _json_str(entry, "model") or "",
            base_url=_env(env, f"{prefix}_BASE_URL") or _json_str(entry, "base_url") or "",
            timeout_sec=max(1.0, timeout_sec),
        )
    return out


def _rates(data: Mapping[str, Any]) -> Dict[str, ProviderRate]:
    section = data.get("rates", {})
    if not isinstance(section, dict):
        raise ConfigError("'rates' must be an object")
    out: Dict[str, ProviderRate] = {}
    for name, value in section.items():
        if not isinstance(value, dict):
            raise ConfigError(f"'rates.{name}' must be an object")
        try:
            out[str(name).lower()] = ProviderRate.from_mapping(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"'rates.{name}' must contain numeric rates") from exc
    return out


def _int_setting(env: Mapping[str, str], data: Mapping[str, Any], env_key: str, json_key: str, default: int) -> int:
    raw: Any = _env(env, env_key)
    source = env_key
    if raw is None and json_key in data:
        raw = data[json_key]
        source = json_key
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ConfigError(f"'{json_key}' must be an integer")
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{source}' must be an integer") from exc
    return max(1, value)


def _bool_setting(env: Mapping[str, str], data: Mapping[str, Any], env_key: str, json_key: str, default: bool) -> bool:
    raw = _env(env, env_key)
    if raw is not None:
        return coerce_bool(raw, default)
    if json_key in data:
        value = data[json_key]
        if not isinstance(value, bool):
            raise ConfigError(f"'{json_key}' must be a boolean")
        return value
    return default
