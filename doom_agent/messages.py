"""Controller <-> agent message schema and its JSON wire form.

Every frame is a single JSON object tagged with ``"type"``; field names are
camelCase on the wire and snake_case on the dataclasses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Type, Union

from .errors import ProtocolError


def _require(data: Mapping[str, Any], key: str, kind: Union[type, tuple], tag: str) -> Any:
    if key not in data:
        raise ProtocolError(f"{tag} is missing field '{key}'")
    value = data[key]
    # bool is an int subclass; keep the two apart on the wire.
    if kind is not bool and isinstance(value, bool):
        raise ProtocolError(f"{tag}.{key} has wrong type bool")
    if not isinstance(value, kind):
        raise ProtocolError(f"{tag}.{key} has wrong type {type(value).__name__}")
    return value


def _string_list(value: Any, where: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ProtocolError(f"{where} must be a list of strings")
    return list(value)


@dataclass(frozen=True)
class ServerConfiguration:
    """Command line and config files for one server launch."""

    command_line: List[str] = field(default_factory=list)
    configs: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commandLine": list(self.command_line),
            "configs": {path: list(lines) for path, lines in self.configs.items()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ServerConfiguration":
        if not isinstance(data, dict):
            raise ProtocolError("RunServer.configuration must be an object")
        command_line = _string_list(data.get("commandLine", []), "configuration.commandLine")
        raw_configs = data.get("configs") or {}
        if not isinstance(raw_configs, dict):
            raise ProtocolError("configuration.configs must be an object")
        configs: Dict[str, List[str]] = {}
        for path, lines in raw_configs.items():
            configs[str(path)] = _string_list(lines, f"configuration.configs[{path!r}]")
        return cls(command_line=command_line, configs=configs)


@dataclass(frozen=True)
class Message:
    TYPE: ClassVar[str] = ""

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.TYPE, **self.payload()}


@dataclass(frozen=True)
class Hello(Message):
    TYPE: ClassVar[str] = "Hello"
    token: str = ""

    def payload(self) -> Dict[str, Any]:
        return {"token": self.token}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Hello":
        return cls(token=_require(data, "token", str, cls.TYPE))


@dataclass(frozen=True)
class Authenticated(Message):
    TYPE: ClassVar[str] = "Authenticated"
    successful: bool = False

    def payload(self) -> Dict[str, Any]:
        return {"successful": self.successful}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Authenticated":
        return cls(successful=_require(data, "successful", bool, cls.TYPE))


@dataclass(frozen=True)
class RunServer(Message):
    TYPE: ClassVar[str] = "RunServer"
    configuration: ServerConfiguration = field(default_factory=ServerConfiguration)

    def payload(self) -> Dict[str, Any]:
        return {"configuration": self.configuration.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunServer":
        raw = _require(data, "configuration", dict, cls.TYPE)
        return cls(configuration=ServerConfiguration.from_dict(raw))


@dataclass(frozen=True)
class ServerStarted(Message):
    TYPE: ClassVar[str] = "ServerStarted"
    error: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        return {"error": self.error}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServerStarted":
        error = data.get("error")
        if error is not None and not isinstance(error, str):
            raise ProtocolError("ServerStarted.error must be a string or null")
        return cls(error=error)


@dataclass(frozen=True)
class ConsoleCommand(Message):
    TYPE: ClassVar[str] = "ConsoleCommand"
    command: List[str] = field(default_factory=list)

    def payload(self) -> Dict[str, Any]:
        return {"command": list(self.command)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConsoleCommand":
        if "command" not in data:
            raise ProtocolError("ConsoleCommand is missing field 'command'")
        return cls(command=_string_list(data["command"], "ConsoleCommand.command"))


@dataclass(frozen=True)
class ConsoleResult(Message):
    TYPE: ClassVar[str] = "ConsoleResult"
    lines: List[str] = field(default_factory=list)

    def payload(self) -> Dict[str, Any]:
        return {"lines": list(self.lines)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConsoleResult":
        if "lines" not in data:
            raise ProtocolError("ConsoleResult is missing field 'lines'")
        return cls(lines=_string_list(data["lines"], "ConsoleResult.lines"))


@dataclass(frozen=True)
class ConsoleBuffer(Message):
    TYPE: ClassVar[str] = "ConsoleBuffer"
    lines: List[str] = field(default_factory=list)

    def payload(self) -> Dict[str, Any]:
        return {"lines": list(self.lines)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConsoleBuffer":
        if "lines" not in data:
            raise ProtocolError("ConsoleBuffer is missing field 'lines'")
        return cls(lines=_string_list(data["lines"], "ConsoleBuffer.lines"))


@dataclass(frozen=True)
class Error(Message):
    TYPE: ClassVar[str] = "Error"
    message: str = ""

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Error":
        return cls(message=_require(data, "message", str, cls.TYPE))

    @classmethod
    def from_exception(cls, exc: BaseException) -> "Error":
        return cls(message=str(exc) or type(exc).__name__)


MESSAGE_TYPES: Dict[str, Type[Message]] = {
    cls.TYPE: cls
    for cls in (
        Hello,
        Authenticated,
        RunServer,
        ServerStarted,
        ConsoleCommand,
        ConsoleResult,
        ConsoleBuffer,
        Error,
    )
}


def encode_message(message: Message) -> str:
    return json.dumps(message.to_dict(), separators=(",", ":"))


def decode_message(frame: Union[str, bytes]) -> Message:
    """Decode one wire frame, raising ProtocolError on anything malformed."""
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = bytes(frame).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"frame is not valid UTF-8: {exc}") from exc
    try:
        data = json.loads(frame)
    except (ValueError, RecursionError) as exc:
        raise ProtocolError(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("frame must be a JSON object")
    tag = data.get("type")
    cls = MESSAGE_TYPES.get(tag) if isinstance(tag, str) else None
    if cls is None:
        raise ProtocolError(f"unknown message type {tag!r}")
    parse: Callable[[Mapping[str, Any]], Message] = getattr(cls, "from_dict")
    return parse(data)
