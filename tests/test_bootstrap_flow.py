import asyncio

import pytest
import websockets
from typer.testing import CliRunner

from client.bootstrap import build_registry, launch
from client.retcon_cli import app
from client.supervisor import ConnectionState


def test_environment_overrides_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "test.yaml").write_text("host: file.example\nappId: t1\n")

    registry = build_registry("test", environ={"TEST_HOST": "override.example"})

    assert registry.get_string("host") == "override.example"
    assert registry.get_string("appId") == "t1"


def test_later_file_formats_override_earlier(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "test.yaml").write_text("host: yaml.example\nappId: 7\n")
    (tmp_path / "test.toml").write_text('host = "toml.example"\n')

    registry = build_registry("test", environ={})

    assert registry.get_string("host") == "toml.example"
    # declared as string even though yaml parsed a number
    assert registry.get_string("appId") == "7"


def test_env_reaches_camel_case_keys_and_durations(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    registry = build_registry("test", environ={"TEST_APPID": "42", "TEST_TIMEOUT": "5s"})

    assert registry.get_string("appId") == "42"
    assert registry.get_duration("timeout").total_seconds() == 5


def test_environment_overrides_typed_file_values(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "test.yaml").write_text("port: 8080\ndebug: false\nmaxConn: 5\n")

    registry = build_registry("test", environ={"TEST_PORT": "9000", "TEST_DEBUG": "true", "TEST_MAXCONN": "9"})

    assert registry.get_number("port") == 9000
    assert registry.get_boolean("debug") is True
    assert registry.get_number("maxConn") == 9


def test_out_of_range_timeout_does_not_abort_load(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    registry = build_registry("test", environ={"TEST_TIMEOUT": "inf", "TEST_HOST": "h"})

    assert registry.get_duration("timeout") is None
    assert registry.get_string("host") == "h"


def test_run_command_prints_path_after_attempt(tmp_path, monkeypatch, dummy_transport_factory):
    from client import retcon_cli

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(retcon_cli, "configure_root_logging", lambda: None)
    (tmp_path / "demo.yaml").write_text("host: localhost\nappId: t1\n")
    events = []

    class RecordingTransport(dummy_transport_factory):
        async def close(self) -> None:
            events.append("close")
            await super().close()

    transport = RecordingTransport()
    monkeypatch.setattr(retcon_cli, "launch", lambda registry: launch(registry, transport))
    monkeypatch.setattr(retcon_cli.console, "print", lambda text, *a, **kw: events.append(("print", text)))

    result = CliRunner().invoke(app, ["run", "--name", "demo", "--linger", "0"])

    assert result.exit_code == 0, result.output
    assert transport.dialed_url == "ws://localhost/ws/t1"
    assert events == ["close", ("print", "/ws/t1")]


def test_run_command_survives_dial_failure(tmp_path, monkeypatch, dummy_transport_factory):
    from client import retcon_cli

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(retcon_cli, "configure_root_logging", lambda: None)
    monkeypatch.setenv("DEMO_HOST", "unreachable.invalid")
    monkeypatch.setenv("DEMO_APPID", "t2")
    transport = dummy_transport_factory(dial_error=OSError("name resolution failed"))
    monkeypatch.setattr(retcon_cli, "launch", lambda registry: launch(registry, transport))

    result = CliRunner().invoke(app, ["run", "--name", "demo", "--linger", "0"])

    assert result.exit_code == 0
    assert transport.calls == ["dial"]
    assert "/ws/t2" in result.output


def test_bad_file_does_not_abort_load(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "test.json").write_text("{broken")
    (tmp_path / "test.yaml").write_text("host: yaml.example\n")

    registry = build_registry("test", environ={})

    assert registry.get_string("host") == "yaml.example"


def test_show_command_lists_resolved_properties(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "demo.yaml").write_text("host: file.example\nappId: t1\n")
    monkeypatch.setenv("DEMO_HOST", "env.example")

    result = CliRunner().invoke(app, ["show", "--name", "demo"])

    assert result.exit_code == 0
    assert "env.example" in result.output
    assert "file.example" not in result.output


@pytest.mark.asyncio
async def test_handshake_against_real_server(tmp_path, monkeypatch):
    received = []

    async def handler(websocket):
        received.append((websocket.request.path, await websocket.recv()))
        await websocket.send("PONG")
        await asyncio.sleep(0.1)

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        monkeypatch.chdir(tmp_path)
        registry = build_registry("test", environ={"TEST_HOST": f"127.0.0.1:{port}", "TEST_APPID": "t1"})

        supervisor = launch(registry)
        outcome = await asyncio.wait_for(supervisor.wait_ready(), timeout=5.0)

    assert received == [("/ws/t1", "OK+OK")]
    assert outcome.state is ConnectionState.CLOSED
    assert outcome.received == "PONG"
