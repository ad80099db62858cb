import json

import pytest

from doom_agent.errors import ProtocolError
from doom_agent.messages import (
    Authenticated,
    ConsoleBuffer,
    ConsoleCommand,
    Error,
    Hello,
    RunServer,
    ServerConfiguration,
    ServerStarted,
    decode_message,
    encode_message,
)


def test_decode_run_server():
    frame = json.dumps({
        "type": "RunServer",
        "configuration": {
            "commandLine": ["-port", "10666", "+exec server.cfg"],
            "configs": {"server.cfg": ["sv_hostname test"], "cfg/maps.cfg": []},
        },
    })
    msg = decode_message(frame)
    assert isinstance(msg, RunServer)
    assert msg.configuration.command_line == ["-port", "10666", "+exec server.cfg"]
    assert msg.configuration.configs == {"server.cfg": ["sv_hostname test"], "cfg/maps.cfg": []}


def test_run_server_configs_default_to_empty():
    msg = decode_message('{"type": "RunServer", "configuration": {"commandLine": []}}')
    assert msg.configuration == ServerConfiguration()


def test_encode_uses_type_tag_and_camel_case():
    cfg = ServerConfiguration(command_line=["-host"], configs={"a.cfg": ["x"]})
    assert json.loads(encode_message(RunServer(configuration=cfg))) == {
        "type": "RunServer",
        "configuration": {"commandLine": ["-host"], "configs": {"a.cfg": ["x"]}},
    }
    assert json.loads(encode_message(ServerStarted())) == {"type": "ServerStarted", "error": None}
    assert json.loads(encode_message(ConsoleBuffer(lines=["a", "b"]))) == {"type": "ConsoleBuffer", "lines": ["a", "b"]}


def test_decode_accepts_bytes():
    assert decode_message(b'{"type": "Authenticated", "successful": true}') == Authenticated(successful=True)


def test_server_started_error_is_optional():
    assert decode_message('{"type": "ServerStarted"}') == ServerStarted(error=None)
    assert decode_message('{"type": "ServerStarted", "error": "boom"}') == ServerStarted(error="boom")


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[1, 2]",
        '{"token": "abc"}',
        '{"type": "Goodbye"}',
        '{"type": "Hello"}',
        '{"type": "Hello", "token": 5}',
        '{"type": "Authenticated", "successful": "yes"}',
        '{"type": "ConsoleCommand", "command": "status"}',
        '{"type": "ConsoleCommand", "command": ["ok", 3]}',
        '{"type": "RunServer", "configuration": {"commandLine": [], "configs": {"a": "b"}}}',
        '{"type": "ServerStarted", "error": 1}',
    ],
)
def test_malformed_frames_raise_protocol_error(frame):
    with pytest.raises(ProtocolError):
        decode_message(frame)


def test_deeply_nested_json_raises_protocol_error():
    with pytest.raises(ProtocolError):
        decode_message("[" * 100000 + "]" * 100000)


def test_error_from_exception_falls_back_to_class_name():
    assert Error.from_exception(ValueError("bad")) == Error(message="bad")
    assert Error.from_exception(KeyError()) == Error(message="KeyError")


def test_hello_and_console_command_decode():
    assert decode_message('{"type": "Hello", "token": "k"}') == Hello(token="k")
    assert decode_message('{"type": "ConsoleCommand", "command": ["status"]}') == ConsoleCommand(command=["status"])
