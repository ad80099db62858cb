"""Doom Agent - remote-controlled game server supervisor."""

from .agent import Agent
from .auth import Credential, credential_from_env
from .config import AgentConfig, EngineConfig, Timeouts, load_config, parse_config_data
from .connection import Connection, ConnectionEvent, ConnectionListener, ConnectionState, connect, transition
from .errors import (
    ConfigurationError,
    PathSafetyError,
    ProtocolError,
    ServerNotRunningError,
    TransportError,
    WaiterProtocolError,
)
from .files import materialize_files, resolve_config_path
from .handle import ProcessHandle
from .hooks import ConnectionHooks
from .messages import (
    Authenticated,
    ConsoleBuffer,
    ConsoleCommand,
    ConsoleResult,
    Error,
    Hello,
    Message,
    RunServer,
    ServerConfiguration,
    ServerStarted,
    decode_message,
    encode_message,
)
from .scheduler import ConsoleOutputScheduler, new_output_queue
from .shutdown import ShutdownPolicy, terminate_process_tree
from .supervisor import ProcessSupervisor
from .transport import Transport, WebsocketTransport, build_ssl_context, websocket_factory
from .waiters import ConsoleResultWaiter, ServerInitWaiter, Waiter

__all__ = [
    "Agent",
    "Credential",
    "credential_from_env",
    "AgentConfig",
    "EngineConfig",
    "Timeouts",
    "load_config",
    "parse_config_data",
    "Connection",
    "ConnectionEvent",
    "ConnectionListener",
    "ConnectionState",
    "connect",
    "transition",
    "ConfigurationError",
    "PathSafetyError",
    "ProtocolError",
    "ServerNotRunningError",
    "TransportError",
    "WaiterProtocolError",
    "materialize_files",
    "resolve_config_path",
    "ProcessHandle",
    "ConnectionHooks",
    "Authenticated",
    "ConsoleBuffer",
    "ConsoleCommand",
    "ConsoleResult",
    "Error",
    "Hello",
    "Message",
    "RunServer",
    "ServerConfiguration",
    "ServerStarted",
    "decode_message",
    "encode_message",
    "ConsoleOutputScheduler",
    "new_output_queue",
    "ShutdownPolicy",
    "terminate_process_tree",
    "ProcessSupervisor",
    "Transport",
    "WebsocketTransport",
    "build_ssl_context",
    "websocket_factory",
    "ConsoleResultWaiter",
    "ServerInitWaiter",
    "Waiter",
]
