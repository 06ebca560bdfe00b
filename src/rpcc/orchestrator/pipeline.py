from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from rpcc.codegen.client import render_client, top_level_names
from rpcc.codegen.server import DispatchTable, render_dispatch
from rpcc.config import BuildConfig, RootSpec
from rpcc.domain.models import EndpointDeclaration, NamespaceNode
from rpcc.errors import NameCollisionError
from rpcc.identifiers import check_unique, derive_identifier
from rpcc.resolver.namespace import NamespaceResolver
from rpcc.resolver.sources import ContentSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EndpointEntry:
    qualified_name: str
    identifier: int
    root: str
    file_path: str
    line: int
    is_async: bool


@dataclass(frozen=True)
class BuildResult:
    trees: tuple[NamespaceNode, ...]
    endpoints: tuple[EndpointEntry, ...]
    client_source: str
    server_source: str


def resolve_roots(
    roots: Sequence[RootSpec],
    *,
    config: Optional[BuildConfig] = None,
    source: Optional[ContentSource] = None,
) -> list[NamespaceNode]:
    """One independent resolver run per root, in order."""
    config = config or BuildConfig()
    resolver = NamespaceResolver(source, markers=config.markers, namespace_markers=config.namespace_markers)
    return [resolver.resolve_root(r.path, module=r.module) for r in roots]


def _entry(tree: NamespaceNode, ep: EndpointDeclaration, identifier: int) -> EndpointEntry:
    return EndpointEntry(
        qualified_name=ep.qualified_name,
        identifier=identifier,
        root=tree.context.module,
        file_path=ep.file_path,
        line=ep.line,
        is_async=ep.is_async,
    )


def collect_endpoints(trees: Sequence[NamespaceNode]) -> list[EndpointEntry]:
    """Listing only; `build` gathers the same entries during its rendering walk."""
    return [_entry(tree, ep, derive_identifier(ep)) for tree in trees for ep in tree.iter_endpoints()]


def _check_top_level_names(trees: Sequence[NamespaceNode]) -> None:
    owners: dict[str, list[str]] = {}
    for tree in trees:
        for name in top_level_names(tree):
            owners.setdefault(name, []).append(tree.context.module)
    for name, roots in owners.items():
        if len(roots) > 1:
            raise NameCollisionError(name, roots)


def build(
    config: BuildConfig,
    *,
    source: Optional[ContentSource] = None,
    roots: Optional[Sequence[RootSpec]] = None,
) -> BuildResult:
    """
    Resolve every root, then walk the trees once: the client writer renders the
    stubs and hands each endpoint to the dispatch table and the entry list as it
    goes, so both artifacts and the listing come from the same traversal.
    """
    trees = tuple(resolve_roots(roots if roots is not None else config.roots, config=config, source=source))

    entries: list[EndpointEntry] = []
    table = DispatchTable()

    def visit(tree: NamespaceNode, ep: EndpointDeclaration, identifier: int) -> None:
        entries.append(_entry(tree, ep, identifier))
        table.add(ep, identifier)

    client_source = render_client(trees, transport=config.transport, envelope=config.result_envelope, visit=visit)

    check_unique((e.identifier, f"{e.root}:{e.qualified_name}") for e in entries)
    _check_top_level_names(trees)
    logger.debug("%d endpoints across %d roots", len(entries), len(trees))

    server_source = render_dispatch(
        table,
        trace=config.trace,
        envelope=config.result_envelope,
        scratch_size=config.scratch_size,
    )
    return BuildResult(
        trees=trees,
        endpoints=tuple(entries),
        client_source=client_source,
        server_source=server_source,
    )


def write_outputs(result: BuildResult, client_out: Path, server_out: Path) -> None:
    for path, text in ((client_out, result.client_source), (server_out, result.server_source)):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.debug("wrote %s", path)
