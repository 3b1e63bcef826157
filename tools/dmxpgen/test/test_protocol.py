"""End-to-end tests: plugin exchange, descriptor set mode and the CLI."""

import io
import logging

import pytest
from google.protobuf import descriptor_pb2
from google.protobuf.compiler import plugin_pb2

from tools.dmxpgen import protocol
from tools.dmxpgen.__main__ import main, run_plugin
from tools.dmxpgen.types import fnv1a_32


def exchange(request):
    adapter = protocol.HostAdapter()
    data = adapter.handle(request.SerializeToString())
    return plugin_pb2.CodeGeneratorResponse.FromString(data), adapter


def by_name(response):
    return {f.name: f.content for f in response.file}


def descriptor_set(request_for, *schemas):
    """What protoc --include_imports --descriptor_set_out writes for ``schemas``."""
    fds = descriptor_pb2.FileDescriptorSet(file=request_for(*schemas).proto_file)
    return fds.SerializeToString()


# -- Scenarios -------------------------------------------------------------

class TestPingScenario:
    def test_go_and_python(self, request_for, ping):
        response, _ = exchange(request_for(ping, parameter="targets=go+python"))
        assert not response.HasField("error")
        files = by_name(response)
        assert list(files) == ["demo.dmxp.go", "demo_dmxp.py"]

        go = files["demo.dmxp.go"]
        assert "func (p *PingClient) Ping(ctx context.Context, req *Empty) (*Pong, error)" in go
        assert '"ping"' in go

        py = files["demo_dmxp.py"]
        assert "def ping(self, request: Empty" in py
        assert '"ping"' in py

    def test_same_channel_id_everywhere(self, request_for, ping):
        response, _ = exchange(request_for(ping))
        expected = f"0x{fnv1a_32('ping'):08x}"
        for name, content in by_name(response).items():
            if name.endswith(".cpp"):
                continue
            assert expected in content, name

    def test_supported_features(self, request_for, ping):
        response, _ = exchange(request_for(ping, parameter="targets=rust"))
        assert response.supported_features == \
            plugin_pb2.CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL


class TestTelemetryScenario:
    def test_missing_name_reported_siblings_emitted(self, request_for, telemetry):
        response, adapter = exchange(request_for(telemetry, parameter="targets=python"))
        assert response.error.startswith("demo/telemetry.proto:7:1: error:")
        assert "demo.Status" in response.error
        assert response.error.count("\n") == 0

        text = by_name(response)["demo_dmxp.py"]
        assert '"sensors/telemetry"' in text
        assert '"cmd"' in text
        assert "class Status" not in text

        result = adapter.last_result
        assert len(result.errors) == 1
        assert not result.ok

    def test_duplicate_channel(self, request_for, schema, channel):
        s = schema()
        s.message("A", channel=channel("dup", 1))
        s.message("B", channel=channel("dup", 2))
        response, _ = exchange(request_for(s, parameter="targets=go"))
        assert "duplicate channel name 'dup'" in response.error
        assert "demo/demo.proto:3:1" in response.error
        assert len(response.file) == 1

    def test_malformed_option_payload(self, request_for, schema, channel, garble):
        s = schema()
        s.message("Good", channel=channel("good", 1))
        bad = s.message("Bad")
        garble(bad.options, 51001)
        response, adapter = exchange(request_for(s, parameter="targets=python"))
        assert response.error.startswith("demo/demo.proto:7:1: error: message demo.Bad:")
        assert '"good"' in by_name(response)["demo_dmxp.py"]
        assert adapter.state == protocol.IDLE

    def test_unknown_target(self, request_for, ping):
        response, _ = exchange(request_for(ping, parameter="targets=java+go"))
        assert "unknown target 'java'" in response.error
        assert list(by_name(response)) == ["demo.dmxp.go"]

    def test_warnings_do_not_fail(self, request_for, ping):
        response, adapter = exchange(request_for(ping, parameter="targets=go,bogus=1"))
        assert not response.HasField("error")
        assert adapter.last_result.ok
        assert len(adapter.last_result.warnings) == 1


class TestGenerate:
    def test_result_groups_diagnostics(self, pipeline, telemetry):
        result = pipeline(telemetry, parameter="targets=go,colour=blue")
        assert len(result.errors) == 1
        assert len(result.warnings) == 1
        assert [f.path for f in result.files] == ["demo.dmxp.go"]

    def test_log_level_parameter(self, pipeline, ping):
        pipeline(ping, parameter="targets=go,log_level=debug")
        assert logging.getLogger("dmxpgen").level == logging.DEBUG
        pipeline(ping, parameter="targets=go,log_level=warning")
        assert logging.getLogger("dmxpgen").level == logging.WARNING

    def test_multiple_files(self, pipeline, ping, telemetry):
        result = pipeline(ping, telemetry, parameter="targets=python")
        text = result.files[0].content
        assert "source: demo/ping.proto" in text
        assert "source: demo/telemetry.proto" in text
        assert "class PingClient:" in text
        assert "class TelemetryPublisher:" in text


# -- Host adapter ----------------------------------------------------------

class TestHostAdapter:
    def test_undecodable_request(self):
        adapter = protocol.HostAdapter()
        with pytest.raises(protocol.DecodeError):
            adapter.handle(b"\xff\xff")
        assert adapter.state == protocol.IDLE
        assert adapter.last_result is None

    def test_state_returns_to_idle(self, request_for, ping):
        _, adapter = exchange(request_for(ping))
        assert adapter.state == protocol.IDLE

    def test_busy_adapter_rejects(self):
        adapter = protocol.HostAdapter()
        adapter.state = protocol.PROCESSING
        with pytest.raises(RuntimeError):
            adapter.handle(b"")

    def test_empty_request(self):
        response, adapter = exchange(plugin_pb2.CodeGeneratorRequest())
        assert len(response.file) == 0
        assert not response.HasField("error")

    def test_no_channels(self, request_for, schema, field):
        s = schema()
        s.message("Plain", field("x", 1))
        response, _ = exchange(request_for(s))
        assert len(response.file) == 0
        assert not response.HasField("error")


# -- Descriptor set mode ---------------------------------------------------

class TestDescriptorSet:
    def test_root_files(self, request_for, ping, telemetry):
        files = request_for(ping, telemetry).proto_file
        assert protocol.root_files(files) == ["demo/ping.proto", "demo/telemetry.proto"]

    def test_generate(self, request_for, ping):
        result = protocol.generate_from_descriptor_set(
            descriptor_set(request_for, ping), "targets=rust")
        assert result.ok
        assert [f.path for f in result.files] == ["demo.rs"]

    def test_explicit_files(self, request_for, ping, telemetry):
        result = protocol.generate_from_descriptor_set(
            descriptor_set(request_for, ping, telemetry), "targets=python", ["demo/ping.proto"])
        assert result.ok
        assert "sensors/telemetry" not in result.files[0].content

    def test_bad_data(self):
        with pytest.raises(protocol.DecodeError):
            protocol.generate_from_descriptor_set(b"\xff\xff")


# -- CLI -------------------------------------------------------------------

class TestPluginMain:
    def test_success(self, request_for, ping):
        stdin = io.BytesIO(request_for(ping, parameter="targets=go").SerializeToString())
        stdout = io.BytesIO()
        assert run_plugin(stdin, stdout) == 0
        response = plugin_pb2.CodeGeneratorResponse.FromString(stdout.getvalue())
        assert [f.name for f in response.file] == ["demo.dmxp.go"]

    def test_errors_exit_nonzero_with_response(self, request_for, telemetry):
        stdin = io.BytesIO(request_for(telemetry, parameter="targets=go").SerializeToString())
        stdout = io.BytesIO()
        assert run_plugin(stdin, stdout) == 1
        response = plugin_pb2.CodeGeneratorResponse.FromString(stdout.getvalue())
        assert response.error
        assert len(response.file) == 1

    def test_decode_failure(self, capsys):
        stdout = io.BytesIO()
        assert run_plugin(io.BytesIO(b"\xff\xff"), stdout) == 1
        assert stdout.getvalue() == b""
        assert "protoc-gen-dmxp:" in capsys.readouterr().err

    def test_warnings_on_stderr(self, request_for, ping, capsys):
        stdin = io.BytesIO(request_for(ping, parameter="targets=go,bogus=1").SerializeToString())
        assert run_plugin(stdin, io.BytesIO()) == 0
        assert "unknown parameter 'bogus'" in capsys.readouterr().err


class TestStandaloneMain:
    def test_writes_files(self, tmp_path, request_for, ping, capsys):
        fds = tmp_path / "schema.pb"
        fds.write_bytes(descriptor_set(request_for, ping))
        out = tmp_path / "gen"
        code = main(["--descriptor-set", str(fds), "--outdir", str(out),
                     "--parameter", "targets=go+python",
                     "--parameter", "python.module_path=py"])
        assert code == 0
        assert (out / "demo.dmxp.go").exists()
        assert (out / "py" / "demo_dmxp.py").exists()
        stdout = capsys.readouterr().out
        assert "  wrote " in stdout
        assert "Generated 2 files for 2 target(s): go, python" in stdout

    def test_errors_write_nothing(self, tmp_path, request_for, telemetry, capsys):
        fds = tmp_path / "schema.pb"
        fds.write_bytes(descriptor_set(request_for, telemetry))
        out = tmp_path / "gen"
        assert main(["--descriptor-set", str(fds), "--outdir", str(out)]) == 1
        assert not out.exists()
        err = capsys.readouterr().err
        assert "demo/telemetry.proto:7:1: error:" in err
        assert "1 error(s); no files written" in err

    def test_missing_descriptor_set(self, tmp_path, capsys):
        assert main(["--descriptor-set", str(tmp_path / "absent.pb")]) == 1
        assert "cannot read" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--version"])
        assert exc.value.code == 0
        assert "protoc-gen-dmxp" in capsys.readouterr().out
