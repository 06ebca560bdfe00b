import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from rpcc.cli import app
from rpcc.config import BuildConfig, load_config, make_config
from rpcc.errors import ConfigError


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(textwrap.dedent(s), encoding="utf-8")


API = """
from rpcc.runtime import endpoint

@endpoint
def echo(x: int) -> int:
    return x
"""


def test_defaults():
    cfg = BuildConfig()
    assert cfg.scratch_size == 2048
    assert cfg.trace is False
    assert cfg.result_envelope is False
    assert "endpoint" in cfg.markers


def test_roots_accept_strings_and_tables():
    cfg = make_config(roots=["a.py", {"path": "b.py", "module": "pkg.b"}])
    assert [(r.path, r.module) for r in cfg.roots] == [("a.py", None), ("b.py", "pkg.b")]


@pytest.mark.parametrize(
    "values",
    [
        {"transport": "no_colon"},
        {"transport": "bad module:x"},
        {"scratch_size": 0},
        {"markers": []},
    ],
)
def test_invalid_values_raise_config_error(values):
    with pytest.raises(ConfigError):
        make_config(**values)


def test_load_config_from_pyproject_with_overrides(tmp_path: Path):
    write(
        tmp_path / "pyproject.toml",
        """
        [tool.rpcc]
        roots = ["api.py"]
        transport = "shop.net:dispatch"
        client_out = "out/client.py"
        trace = true
        """,
    )
    cfg = load_config(tmp_path, trace=False, server_out=None)

    assert cfg.roots[0].path == str(tmp_path.resolve() / "api.py")
    assert cfg.client_out == str(tmp_path.resolve() / "out" / "client.py")
    assert cfg.server_out == str(tmp_path.resolve() / "rpc_server.py")
    assert cfg.transport == "shop.net:dispatch"
    assert cfg.trace is False


def test_load_config_without_pyproject(tmp_path: Path):
    cfg = load_config(tmp_path)
    assert cfg.roots == []


def test_cli_build_writes_both_artifacts(tmp_path: Path):
    write(tmp_path / "api.py", API)
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "build",
            str(tmp_path / "api.py"),
            "--project-dir",
            str(tmp_path),
            "--transport",
            "net:dispatch",
            "--client-out",
            "gen/client.py",
            "--server-out",
            "gen/server.py",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Endpoints: 1" in result.output

    client = (tmp_path / "gen" / "client.py").read_text(encoding="utf-8")
    server = (tmp_path / "gen" / "server.py").read_text(encoding="utf-8")
    assert "from net import dispatch as _perform_call" in client
    assert "async def dispatch_request(stream) -> bytes:" in server


def test_cli_build_reports_generation_errors(tmp_path: Path):
    write(tmp_path / "api.py", "from . import missing\n")
    runner = CliRunner()
    result = runner.invoke(app, ["build", str(tmp_path / "api.py"), "--project-dir", str(tmp_path)])

    assert result.exit_code == 1
    assert "missing" in result.output


def test_cli_endpoints_json(tmp_path: Path):
    write(tmp_path / "api.py", API)
    runner = CliRunner()
    result = runner.invoke(
        app, ["endpoints", str(tmp_path / "api.py"), "--project-dir", str(tmp_path), "--format", "json"]
    )
    assert result.exit_code == 0, result.output
    assert '"name": "echo"' in result.output
    assert '"root": "api"' in result.output


def test_cli_tree(tmp_path: Path):
    write(tmp_path / "api.py", API)
    runner = CliRunner()
    result = runner.invoke(app, ["tree", str(tmp_path / "api.py"), "--project-dir", str(tmp_path)])
    assert result.exit_code == 0, result.output
    assert "echo()" in result.output
