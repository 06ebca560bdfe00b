from __future__ import annotations

import ast
import copy
import logging
import textwrap
from typing import Callable, Optional, Sequence

from rpcc.domain.models import EndpointDeclaration, ModuleContext, NamespaceNode
from rpcc.identifiers import derive_identifier

logger = logging.getLogger(__name__)

HEADER = "# Generated by rpcc. Do not edit."

_STUB_TEMPLATE = """
async def _stub():
    payload = _rpc.pack_call({identifier:#018x}, {args})
    response = await _rpc.perform(_perform_call, payload)
    return _rpc.unpack_result(response, {returns}{envelope})
"""


def split_transport(transport: str) -> tuple[str, str]:
    module, _, attr = transport.partition(":")
    return module, attr


def _args_tuple(endpoint: EndpointDeclaration) -> str:
    names = [p.name for p in endpoint.params]
    if not names:
        return "()"
    if len(names) == 1:
        return f"({names[0]},)"
    return "(" + ", ".join(names) + ")"


def _returns_expr(endpoint: EndpointDeclaration) -> str:
    node = endpoint.node.returns
    if node is None:
        return "None"
    # "Order" as a string annotation still has to be a real expression in the stub body
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value.strip()
    return ast.unparse(node)


def render_stub(
    endpoint: EndpointDeclaration,
    *,
    in_namespace: bool,
    envelope: bool = False,
    identifier: Optional[int] = None,
) -> str:
    """
    Rewrite one endpoint declaration into a call stub: same name and parameters,
    `async def`, body replaced by pack / perform / unpack.
    """
    node = copy.deepcopy(endpoint.node)
    template = ast.parse(
        _STUB_TEMPLATE.format(
            identifier=derive_identifier(endpoint) if identifier is None else identifier,
            args=_args_tuple(endpoint),
            returns=_returns_expr(endpoint),
            envelope=", envelope=True" if envelope else "",
        )
    ).body[0]

    fields = {f: getattr(node, f, None) for f in node._fields}
    fields["body"] = template.body
    fields["decorator_list"] = [ast.Name(id="staticmethod", ctx=ast.Load())] if in_namespace else []
    fields["type_comment"] = None
    stub = ast.AsyncFunctionDef(**fields)
    ast.fix_missing_locations(stub)
    return ast.unparse(stub)


def _docstring(text: str) -> str:
    return ast.unparse(ast.Expr(value=ast.Constant(value=text)))


def top_level_names(tree: NamespaceNode) -> list[str]:
    names = [ep.name for ep in tree.endpoints]
    names.extend(name for name, child in tree.children.items() if child.total_endpoints())
    return names


def absolute_module(package: str, level: int, module: Optional[str]) -> str:
    """`from ..x import y` seen in package a.b.c -> a.b.x"""
    base = package.split(".") if package else []
    if level > 1:
        base = base[: len(base) - (level - 1)]
    if module:
        base.append(module)
    return ".".join(base)


def _binding_import(context: ModuleContext, name: str) -> Optional[str]:
    for stmt in context.imports:
        if isinstance(stmt, ast.Import):
            for alias in stmt.names:
                bound = alias.asname or alias.name.split(".")[0]
                if bound != name:
                    continue
                if alias.asname:
                    return f"import {alias.name} as {alias.asname}"
                return f"import {alias.name}"
        elif isinstance(stmt, ast.ImportFrom):
            for alias in stmt.names:
                if (alias.asname or alias.name) != name:
                    continue
                module = stmt.module or ""
                if stmt.level:
                    module = absolute_module(context.package, stmt.level, stmt.module)
                target = f"{alias.name} as {alias.asname}" if alias.asname else alias.name
                return f"from {module} import {target}"
    if name in context.local_names:
        return f"from {context.module} import {name}"
    return None


EndpointVisitor = Callable[[NamespaceNode, EndpointDeclaration, int], None]


class ClientWriter:
    """
    Single depth-first walk over the trees that renders every stub, gathers the
    imports the stubs need, and reports each endpoint with its identifier to
    `visit` (own endpoints first, then child namespaces, roots in order).
    """

    def __init__(self, *, envelope: bool = False, visit: Optional[EndpointVisitor] = None):
        self.envelope = envelope
        self.visit = visit
        self.imports: list[str] = []
        self._seen_imports: set[str] = set()

    def _carry(self, node: NamespaceNode, endpoint: EndpointDeclaration) -> None:
        # names with no binding (builtins) need nothing
        for name in sorted(endpoint.signature_names):
            line = _binding_import(node.context, name)
            if line and line not in self._seen_imports:
                self._seen_imports.add(line)
                self.imports.append(line)

    def _stubs(self, root: NamespaceNode, node: NamespaceNode, *, in_namespace: bool) -> list[str]:
        chunks = []
        for ep in node.endpoints:
            identifier = derive_identifier(ep)
            self._carry(node, ep)
            if self.visit is not None:
                self.visit(root, ep, identifier)
            chunks.append(render_stub(ep, in_namespace=in_namespace, envelope=self.envelope, identifier=identifier))
        return chunks

    def _children(self, root: NamespaceNode, node: NamespaceNode) -> list[str]:
        chunks = []
        for child in node.children.values():
            if not child.total_endpoints():
                logger.debug("skipping namespace %s: no endpoints", ".".join(child.path))
                continue
            chunks.append(self.namespace(root, child))
        return chunks

    def namespace(self, root: NamespaceNode, node: NamespaceNode) -> str:
        chunks: list[str] = []
        doc = node.metadata.get("docstring")
        if doc:
            chunks.append(_docstring(doc))
        chunks += self._stubs(root, node, in_namespace=True)
        chunks += self._children(root, node)
        body = "\n\n".join(chunks)
        return f"class {node.name}:\n" + textwrap.indent(body, "    ")

    def root(self, tree: NamespaceNode) -> list[str]:
        """Top-level chunks contributed by one root: its own endpoints, then its non-empty namespaces."""
        return self._stubs(tree, tree, in_namespace=False) + self._children(tree, tree)


def render_client(
    trees: Sequence[NamespaceNode],
    *,
    transport: str,
    envelope: bool = False,
    visit: Optional[EndpointVisitor] = None,
) -> str:
    """Client surface for one or more roots, concatenated in root order."""
    writer = ClientWriter(envelope=envelope, visit=visit)
    chunks: list[str] = []
    for tree in trees:
        root_chunks = writer.root(tree)
        if root_chunks:
            chunks.append(f"# root: {tree.context.module}")
            chunks.extend(root_chunks)

    transport_module, transport_attr = split_transport(transport)
    header = [
        HEADER,
        "from __future__ import annotations",
        "",
        "from rpcc import runtime as _rpc",
        f"from {transport_module} import {transport_attr} as _perform_call",
    ]
    if writer.imports:
        header.append("")
        header.extend(writer.imports)

    return "\n".join(header) + "\n\n\n" + "\n\n\n".join(chunks) + "\n"
