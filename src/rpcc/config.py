from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from rpcc.errors import ConfigError
from rpcc.extractors.endpoints import DEFAULT_ENDPOINT_MARKERS, DEFAULT_NAMESPACE_MARKERS
from rpcc.runtime import SCRATCH_SIZE

_TRANSPORT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*:[A-Za-z_][A-Za-z0-9_]*$")


class RootSpec(BaseModel):
    path: str
    module: Optional[str] = None    # derived from package layout when omitted


class BuildConfig(BaseModel):
    """
    Build options. Read from `[tool.rpcc]` in pyproject.toml:

        [tool.rpcc]
        roots = ["src/shop/api/__init__.py", {path = "admin.py", module = "tools.admin"}]
        client_out = "src/shop/client.py"
        server_out = "src/shop/server.py"
        transport = "shop.net:dispatch"
        trace = false
    """

    roots: list[RootSpec] = Field(default_factory=list)
    client_out: str = "rpc_client.py"
    server_out: str = "rpc_server.py"
    transport: str = "app.transport:dispatch"
    markers: list[str] = Field(default_factory=lambda: list(DEFAULT_ENDPOINT_MARKERS))
    namespace_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_NAMESPACE_MARKERS))
    trace: bool = False
    result_envelope: bool = False
    scratch_size: int = Field(SCRATCH_SIZE, gt=0)

    @field_validator("roots", mode="before")
    @classmethod
    def _roots_from_strings(cls, v: Any) -> Any:
        if isinstance(v, (str, dict)):
            v = [v]
        if isinstance(v, list):
            return [{"path": r} if isinstance(r, str) else r for r in v]
        return v

    @field_validator("transport")
    @classmethod
    def _transport_shape(cls, v: str) -> str:
        v = v.strip()
        if not _TRANSPORT.match(v):
            raise ValueError("transport must look like 'package.module:callable'")
        return v

    @field_validator("markers", "namespace_markers")
    @classmethod
    def _non_empty(cls, v: list[str]) -> list[str]:
        v = [m.strip() for m in v if m.strip()]
        if not v:
            raise ValueError("at least one marker is required")
        return v


def make_config(**values: Any) -> BuildConfig:
    try:
        return BuildConfig(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid rpcc configuration:\n{exc}") from exc


def load_config(project_dir: Path, **overrides: Any) -> BuildConfig:
    """
    `[tool.rpcc]` from `<project_dir>/pyproject.toml` (if any), with `overrides`
    applied on top (None values are ignored). Relative paths are anchored at project_dir.
    """
    project_dir = project_dir.expanduser().resolve()
    values: dict[str, Any] = {}

    pyproject = project_dir / "pyproject.toml"
    if pyproject.exists():
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Cannot read {pyproject}: {exc}") from exc
        values.update(data.get("tool", {}).get("rpcc", {}))

    values.update({k: v for k, v in overrides.items() if v is not None})
    cfg = make_config(**values)

    def anchor(p: str) -> str:
        path = Path(p).expanduser()
        return str(path if path.is_absolute() else project_dir / path)

    return cfg.model_copy(
        update={
            "roots": [r.model_copy(update={"path": anchor(r.path)}) for r in cfg.roots],
            "client_out": anchor(cfg.client_out),
            "server_out": anchor(cfg.server_out),
        }
    )
