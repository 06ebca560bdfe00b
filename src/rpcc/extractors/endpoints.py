from __future__ import annotations

import ast
import copy
from typing import Iterable, Optional

from rpcc.domain.models import EndpointDeclaration, ModuleContext, ParamDecl
from rpcc.errors import UnsupportedEndpointError

DEFAULT_ENDPOINT_MARKERS = ("endpoint", "runtime.endpoint", "rpcc.runtime.endpoint")
DEFAULT_NAMESPACE_MARKERS = ("namespace", "runtime.namespace", "rpcc.runtime.namespace")

_RECEIVER_NAMES = {"self", "cls"}

FunctionNode = (ast.FunctionDef, ast.AsyncFunctionDef)


def decorator_name(dec: ast.AST) -> Optional[str]:
    """
    Dotted name of a decorator expression:
      @endpoint            -> "endpoint"
      @rpcc.runtime.endpoint -> "rpcc.runtime.endpoint"
      @endpoint()          -> "endpoint"
    Anything else (subscripts, lambdas, ...) has no name.
    """
    if isinstance(dec, ast.Call):
        dec = dec.func
    parts: list[str] = []
    while isinstance(dec, ast.Attribute):
        parts.append(dec.attr)
        dec = dec.value
    if not isinstance(dec, ast.Name):
        return None
    parts.append(dec.id)
    return ".".join(reversed(parts))


def has_marker(decorators: Iterable[ast.AST], markers: Iterable[str]) -> bool:
    wanted = set(markers)
    return any(decorator_name(d) in wanted for d in decorators)


def strip_markers(decorators: Iterable[ast.AST], markers: Iterable[str]) -> list[ast.AST]:
    wanted = set(markers)
    return [d for d in decorators if decorator_name(d) not in wanted]


def _annotation_names(node: Optional[ast.AST]) -> set[str]:
    # root names an annotation refers to; string annotations are parsed too
    names: set[str] = set()
    if node is None:
        return names
    for sub in ast.walk(node):
        if isinstance(sub, ast.Name):
            names.add(sub.id)
        elif isinstance(sub, ast.Constant) and isinstance(sub.value, str):
            try:
                names |= _annotation_names(ast.parse(sub.value, mode="eval"))
            except SyntaxError:
                continue
    return names


def _default_names(args: ast.arguments) -> set[str]:
    # defaults run when the client module loads, so their names need bindings too
    names: set[str] = set()
    for node in [*args.defaults, *args.kw_defaults]:
        if node is None:
            continue
        names.update(sub.id for sub in ast.walk(node) if isinstance(sub, ast.Name))
    return names


def _check_shape(node: ast.AST, qualified: str, context: ModuleContext) -> None:
    args = node.args
    positional = [*args.posonlyargs, *args.args]
    if positional and positional[0].arg in _RECEIVER_NAMES:
        raise UnsupportedEndpointError(
            qualified,
            f"implicit receiver parameter '{positional[0].arg}'",
            node=node,
            file_path=context.file_path,
        )
    if args.vararg is not None:
        raise UnsupportedEndpointError(
            qualified, f"variadic parameter '*{args.vararg.arg}'", node=node, file_path=context.file_path
        )
    if args.kwarg is not None:
        raise UnsupportedEndpointError(
            qualified, f"variadic keyword parameter '**{args.kwarg.arg}'", node=node, file_path=context.file_path
        )


def extract_endpoint(
    node: ast.AST,
    *,
    markers: Iterable[str],
    context: ModuleContext,
    namespace_path: tuple[str, ...] = (),
    attr_path: tuple[str, ...] = (),
) -> Optional[EndpointDeclaration]:
    """
    Return the endpoint declared by `node`, or None when it does not carry the marker.
    The returned declaration holds a copy of the node with the marker removed;
    the input node is left untouched.
    """
    if not isinstance(node, FunctionNode):
        return None
    markers = tuple(markers)
    if not has_marker(node.decorator_list, markers):
        return None

    path = (*namespace_path, node.name)
    _check_shape(node, ".".join(path), context)

    stripped = copy.deepcopy(node)
    stripped.decorator_list = strip_markers(stripped.decorator_list, markers)

    args = stripped.args
    params: list[ParamDecl] = []
    names: set[str] = set()
    for a in [*args.posonlyargs, *args.args]:
        params.append(ParamDecl(name=a.arg, annotation=ast.unparse(a.annotation) if a.annotation else None))
        names |= _annotation_names(a.annotation)
    for a in args.kwonlyargs:
        params.append(
            ParamDecl(
                name=a.arg,
                annotation=ast.unparse(a.annotation) if a.annotation else None,
                keyword_only=True,
            )
        )
        names |= _annotation_names(a.annotation)
    names |= _annotation_names(stripped.returns)
    names |= _default_names(args)

    return EndpointDeclaration(
        name=node.name,
        params=tuple(params),
        returns=ast.unparse(stripped.returns) if stripped.returns is not None else None,
        path=path,
        node=stripped,
        is_async=isinstance(node, ast.AsyncFunctionDef),
        module=context.module,
        attr_path=(*attr_path, node.name),
        file_path=context.file_path,
        line=getattr(node, "lineno", 0) or 0,
        signature_names=frozenset(names),
    )


def extract_endpoints(
    body: Iterable[ast.stmt],
    *,
    markers: Iterable[str] = DEFAULT_ENDPOINT_MARKERS,
    context: ModuleContext,
    namespace_path: tuple[str, ...] = (),
    attr_path: tuple[str, ...] = (),
) -> list[EndpointDeclaration]:
    """Endpoints declared directly in a namespace body, in declaration order."""
    markers = tuple(markers)
    out: list[EndpointDeclaration] = []
    for stmt in body:
        ep = extract_endpoint(
            stmt,
            markers=markers,
            context=context,
            namespace_path=namespace_path,
            attr_path=attr_path,
        )
        if ep is not None:
            out.append(ep)
    return out
