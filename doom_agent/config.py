from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .auth import Credential
from .connection import RECONNECT_BACKOFF
from .errors import ConfigurationError
from .scheduler import CONSOLE_PUMP_PERIOD
from .supervisor import CONSOLE_TIMEOUT, INIT_TIMEOUT

DEFAULT_CONFIG_PATH = "agent.yaml"
DEFAULT_URL = "wss://doom-servers:8443/gs-guide-websocket"
DEFAULT_ENGINE = "zandronum"


@dataclass(frozen=True)
class EngineConfig:
    name: str
    executable: Path
    workdir: Path


@dataclass(frozen=True)
class Timeouts:
    init: float = INIT_TIMEOUT
    console: float = CONSOLE_TIMEOUT
    reconnect_backoff: float = RECONNECT_BACKOFF
    console_period: float = CONSOLE_PUMP_PERIOD


@dataclass(frozen=True)
class AgentConfig:
    key: str
    engine: EngineConfig
    url: str = DEFAULT_URL
    cafile: Optional[str] = None
    timeouts: Timeouts = field(default_factory=Timeouts)

    def credential(self) -> Credential:
        return Credential(self.key)


def _section(raw: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"config section '{name}' must be a mapping")
    return value


def _positive(raw: Mapping[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"timeouts.{key} must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigurationError(f"timeouts.{key} must be positive, got {value!r}")
    return number


def _parse_timeouts(raw: Mapping[str, Any]) -> Timeouts:
    return Timeouts(
        init=_positive(raw, "init", INIT_TIMEOUT),
        console=_positive(raw, "console", CONSOLE_TIMEOUT),
        reconnect_backoff=_positive(raw, "reconnect_backoff", RECONNECT_BACKOFF),
        console_period=_positive(raw, "console_period", CONSOLE_PUMP_PERIOD),
    )


def _parse_engine(raw: Mapping[str, Any], name: str, base_dir: Path) -> EngineConfig:
    engines = _section(raw, "engines")
    engine_raw = engines.get(name) or {}
    if not isinstance(engine_raw, dict):
        raise ConfigurationError(f"engines.{name} must be a mapping")

    executable = (base_dir / os.path.expanduser(str(engine_raw.get("executable") or name))).absolute()
    workdir = (base_dir / os.path.expanduser(str(engine_raw.get("workdir") or "."))).absolute()

    if not workdir.is_dir():
        raise ConfigurationError(f"{workdir} is not a directory")
    if not executable.is_file() or not os.access(executable, os.X_OK):
        raise ConfigurationError(f"{executable} cannot be executed by the current user")
    return EngineConfig(name=name, executable=executable, workdir=workdir)


def parse_config_data(
    raw: Any,
    *,
    env: Optional[Mapping[str, str]] = None,
    base_dir: Optional[Path] = None,
) -> AgentConfig:
    """Build and validate an AgentConfig from a parsed YAML document.

    ``DOOM_AGENT_KEY``, ``DOOM_AGENT_URL``, ``DOOM_AGENT_ENGINE`` and
    ``DOOM_AGENT_CAFILE`` in ``env`` override the document. Relative paths are
    resolved against ``base_dir`` (default: the current directory).
    """
    env_map = os.environ if env is None else env
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError("agent config must be a mapping")
    base = base_dir or Path.cwd()

    agent = _section(raw, "agent")
    key = env_map.get("DOOM_AGENT_KEY") or agent.get("key")
    if not key:
        raise ConfigurationError("agent key is not set (agent.key or DOOM_AGENT_KEY)")

    url = env_map.get("DOOM_AGENT_URL") or agent.get("url") or DEFAULT_URL
    cafile = env_map.get("DOOM_AGENT_CAFILE") or agent.get("cafile")
    if cafile:
        cafile_path = (base / os.path.expanduser(str(cafile))).absolute()
        if not cafile_path.is_file():
            raise ConfigurationError(f"CA file {cafile_path} does not exist")
        cafile = str(cafile_path)

    engine_name = str(env_map.get("DOOM_AGENT_ENGINE") or raw.get("engine") or DEFAULT_ENGINE)

    return AgentConfig(
        key=str(key),
        engine=_parse_engine(raw, engine_name, base),
        url=str(url),
        cafile=cafile or None,
        timeouts=_parse_timeouts(_section(raw, "timeouts")),
    )


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH, *, env: Optional[Mapping[str, str]] = None) -> AgentConfig:
    """Load ``path`` (missing file means all defaults) and validate it."""
    p = Path(path)
    raw: Any = {}
    if p.exists():
        try:
            with p.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"cannot parse {p}: {exc}") from exc
    return parse_config_data(raw, env=env, base_dir=p.absolute().parent)
