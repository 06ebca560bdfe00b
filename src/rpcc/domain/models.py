from __future__ import annotations

import ast
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional


@dataclass(frozen=True)
class ModuleContext:
    """
    What the code generators need to know about the file a namespace body came from.

    `imports` holds the top-level import statements of the file and
    `local_names` the names bound by its top-level classes, functions and assignments.
    """

    module: str                 # dotted import path of the file (pkg.api.orders)
    package: str                # package used for relative imports ("" at top level)
    file_path: str
    imports: tuple[ast.stmt, ...] = ()
    local_names: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ParamDecl:
    name: str
    annotation: Optional[str] = None    # source text; None when unannotated
    keyword_only: bool = False


@dataclass(frozen=True, eq=False)
class EndpointDeclaration:
    name: str
    params: tuple[ParamDecl, ...]
    returns: Optional[str]              # None means unit
    path: tuple[str, ...]               # namespace names + name, relative to the root
    node: ast.AST                       # declaration with the endpoint marker stripped
    is_async: bool
    module: str                         # module holding the decorated function
    attr_path: tuple[str, ...]          # attribute chain inside `module` (inline namespaces + name)
    file_path: str = ""
    line: int = 0
    signature_names: frozenset[str] = frozenset()

    @property
    def qualified_name(self) -> str:
        return ".".join(self.path)


@dataclass(frozen=True, eq=False)
class NamespaceNode:
    """
    One resolved namespace. Children keep source order and are exposed read-only,
    so a tree never changes once the resolver has returned it.
    """

    name: str
    path: tuple[str, ...]
    context: ModuleContext
    children: Mapping[str, "NamespaceNode"] = field(default_factory=dict)
    endpoints: tuple[EndpointDeclaration, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", MappingProxyType(dict(self.children)))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def total_endpoints(self) -> int:
        return len(self.endpoints) + sum(c.total_endpoints() for c in self.children.values())

    def iter_endpoints(self) -> Iterator[EndpointDeclaration]:
        """Depth-first: own endpoints first, then children in source order."""
        yield from self.endpoints
        for child in self.children.values():
            yield from child.iter_endpoints()

    def iter_nodes(self) -> Iterator["NamespaceNode"]:
        yield self
        for child in self.children.values():
            yield from child.iter_nodes()
