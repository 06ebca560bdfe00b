from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from rpcc.domain.models import EndpointDeclaration, NamespaceNode
from rpcc.identifiers import derive_identifier
from rpcc.runtime import SCRATCH_SIZE

logger = logging.getLogger(__name__)

HEADER = "# Generated by rpcc. Do not edit."
DISPATCH_ENTRY = "dispatch_request"
TRACE_LOGGER = "rpcc.dispatch"


@dataclass(frozen=True)
class DispatchArm:
    identifier: int
    endpoint: EndpointDeclaration
    index: int
    target: str     # expression reaching the decorated function


def _call_args(endpoint: EndpointDeclaration) -> str:
    parts = []
    for i, p in enumerate(endpoint.params):
        parts.append(f"{p.name}=args[{i}]" if p.keyword_only else f"args[{i}]")
    return ", ".join(parts)


class DispatchTable:
    """Arms in registration order, plus the module -> alias imports they need."""

    def __init__(self):
        self.arms: list[DispatchArm] = []
        self.aliases: dict[str, str] = {}

    def add(self, endpoint: EndpointDeclaration, identifier: int) -> DispatchArm:
        alias = self.aliases.setdefault(endpoint.module, f"_mod{len(self.aliases)}")
        arm = DispatchArm(
            identifier=identifier,
            endpoint=endpoint,
            index=len(self.arms),
            target=".".join((alias, *endpoint.attr_path)),
        )
        self.arms.append(arm)
        return arm


def flatten(trees: Sequence[NamespaceNode]) -> DispatchTable:
    """
    One arm per endpoint across every tree.
    Arm order follows the depth-first endpoint order of each tree, roots in order.
    """
    table = DispatchTable()
    for tree in trees:
        for ep in tree.iter_endpoints():
            table.add(ep, derive_identifier(ep))
    return table


def _render_arm(arm: DispatchArm, *, trace: bool, envelope: bool) -> str:
    ep = arm.endpoint
    qualified = ep.qualified_name
    call = f"{arm.target}({_call_args(ep)})"
    if ep.is_async:
        call = f"await {call}"

    lines = [
        f"_ARGS_{arm.index} = _rpc.arguments_decoder({arm.target})",
        "",
        "",
        f"async def _arm_{arm.index}(reader: _rpc.RequestReader) -> bytes:",
        f"    # {qualified}",
        f"    args = reader.decode_args(_ARGS_{arm.index})",
    ]
    if trace:
        lines.append(f'    _log.debug("{qualified} args=%r", args)')

    if envelope:
        lines += [
            "    try:",
            f"        result = {call}",
            "    except Exception as exc:",
        ]
        if trace:
            lines.append(f'        _log.debug("{qualified} failed: %s", _rpc.describe_error(exc))')
        lines += [
            "        return _rpc.encode_envelope(False, _rpc.describe_error(exc))",
            "    data = _rpc.encode_envelope(True, result)",
        ]
    else:
        lines += [
            f"    result = {call}",
            "    data = _rpc.encode_result(result)",
        ]

    if trace:
        lines.append(f'    _log.debug("{qualified} result=%r (%d bytes)", result, len(data))')
    lines.append("    return data")
    return "\n".join(lines)


def render_server(
    trees: Sequence[NamespaceNode],
    *,
    trace: bool = False,
    envelope: bool = False,
    scratch_size: int = SCRATCH_SIZE,
) -> str:
    """
    Flat dispatch table over every endpoint of every tree, and the single entry point
    `dispatch_request(stream) -> bytes`.
    """
    return render_dispatch(flatten(trees), trace=trace, envelope=envelope, scratch_size=scratch_size)


def render_dispatch(
    table: DispatchTable,
    *,
    trace: bool = False,
    envelope: bool = False,
    scratch_size: int = SCRATCH_SIZE,
) -> str:
    arms, aliases = table.arms, table.aliases
    logger.debug("rendering %d dispatch arms over %d modules", len(arms), len(aliases))

    out = [
        HEADER,
        "from __future__ import annotations",
        "",
    ]
    if trace:
        out.append("import logging")
    out.append("")
    out.extend(f"import {module} as {alias}" for module, alias in aliases.items())
    out.append("from rpcc import runtime as _rpc")
    if trace:
        out += ["", f'_log = logging.getLogger("{TRACE_LOGGER}")']

    for arm in arms:
        out += ["", ""]
        out.append(_render_arm(arm, trace=trace, envelope=envelope))

    out += ["", "", "_DISPATCH_TABLE = {"]
    for arm in arms:
        out.append(f"    {arm.identifier:#018x}: _arm_{arm.index},")
    out.append("}")

    out += [
        "",
        "",
        f"async def {DISPATCH_ENTRY}(stream) -> bytes:",
        f"    reader = _rpc.RequestReader(stream, scratch_size={scratch_size})",
        "    method_id = reader.read_method_id()",
        "    arm = _DISPATCH_TABLE.get(method_id)",
        "    if arm is None:",
        "        raise _rpc.UnknownMethodError(method_id)",
        "    return await arm(reader)",
    ]
    return "\n".join(out) + "\n"
