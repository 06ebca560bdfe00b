from __future__ import annotations

import ast
import logging
from pathlib import PurePath
from typing import Iterable, Optional

from rpcc.domain.models import EndpointDeclaration, ModuleContext, NamespaceNode
from rpcc.errors import DuplicateNameError, NamespaceNotFoundError, NamespaceParseError, RootNotFoundError
from rpcc.extractors.endpoints import (
    DEFAULT_ENDPOINT_MARKERS,
    DEFAULT_NAMESPACE_MARKERS,
    extract_endpoints,
    has_marker,
    strip_markers,
)
from rpcc.resolver.sources import ContentSource, FileSystemSource, PathLike

logger = logging.getLogger(__name__)

MODULE_SUFFIX = ".py"
INDEX_FILE = "__init__.py"


def module_candidates(directory: PurePath, name: str) -> list[PurePath]:
    """Files that may back namespace `name`, in lookup order."""
    return [directory / f"{name}{MODULE_SUFFIX}", directory / name / INDEX_FILE]


def resolve_module_file(directory: PurePath, name: str, source: ContentSource) -> Optional[PurePath]:
    for candidate in module_candidates(directory, name):
        if source.is_file(candidate):
            return candidate
    return None


def module_name_for(path: PathLike, source: ContentSource) -> str:
    """
    Import path of a file, following package rules:
      pkg/api/__init__.py -> pkg.api    (when pkg/ is a package too)
      tools/main.py       -> main       (when tools/ has no __init__.py)
    """
    path = PurePath(path)
    parts: list[str] = [] if path.name == INDEX_FILE else [path.stem]
    directory = path.parent
    if path.name == INDEX_FILE:
        parts.append(directory.name)
        directory = directory.parent
    while directory != directory.parent and source.is_file(directory / INDEX_FILE):
        parts.append(directory.name)
        directory = directory.parent
    return ".".join(reversed([p for p in parts if p]))


def _join_module(package: str, name: str) -> str:
    return f"{package}.{name}" if package else name


def _local_names(body: Iterable[ast.stmt]) -> frozenset[str]:
    names: set[str] = set()
    for stmt in body:
        if isinstance(stmt, (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
            names.add(stmt.name)
        elif isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                if isinstance(target, ast.Name):
                    names.add(target.id)
        elif isinstance(stmt, (ast.AnnAssign, ast.AugAssign)) and isinstance(stmt.target, ast.Name):
            names.add(stmt.target.id)
        elif getattr(ast, "TypeAlias", None) is not None and isinstance(stmt, ast.TypeAlias):
            names.add(stmt.name.id)
    return frozenset(names)


def module_context(tree: ast.Module, *, module: str, package: str, file_path: str) -> ModuleContext:
    imports = tuple(s for s in tree.body if isinstance(s, (ast.Import, ast.ImportFrom)))
    return ModuleContext(
        module=module,
        package=package,
        file_path=file_path,
        imports=imports,
        local_names=_local_names(tree.body),
    )


class NamespaceResolver:
    """
    Depth-first resolution of one root into a NamespaceNode tree.

    Namespace references inside a body:
      - `@namespace class name: ...` -> inline content, no file access
      - `from . import name`         -> `<pkg dir>/name.py`, then `<pkg dir>/name/__init__.py`

    Every file is read and parsed on its own; nothing is cached.
    """

    def __init__(
        self,
        source: Optional[ContentSource] = None,
        *,
        markers: Iterable[str] = DEFAULT_ENDPOINT_MARKERS,
        namespace_markers: Iterable[str] = DEFAULT_NAMESPACE_MARKERS,
    ):
        self.source = source or FileSystemSource()
        self.markers = tuple(markers)
        self.namespace_markers = tuple(namespace_markers)

    def resolve_root(self, path: PathLike, *, module: Optional[str] = None) -> NamespaceNode:
        path = PurePath(path)
        if not self.source.is_file(path):
            raise RootNotFoundError(str(path))

        module = module or module_name_for(path, self.source)
        is_package = path.name == INDEX_FILE
        package = module if is_package else module.rpartition(".")[0]
        name = module.rpartition(".")[2] or path.stem

        tree = self._parse(path, namespace=module or name)
        context = module_context(tree, module=module, package=package, file_path=str(path))
        logger.debug("resolving root %s (module %s)", path, module)

        return self._build(
            name=name,
            body=tree.body,
            context=context,
            # the root's directory is searched even when the root is a plain module
            search_dir=path.parent,
            search_package=package,
            path=(),
            attr_path=(),
            metadata={"file": str(path), "docstring": ast.get_docstring(tree), "decorators": ()},
        )

    def _parse(self, path: PurePath, *, namespace: str) -> ast.Module:
        text = self.source.read_text(path)
        try:
            return ast.parse(text, filename=str(path))
        except SyntaxError as exc:
            raise NamespaceParseError(namespace, str(path), exc) from exc

    def _build(
        self,
        *,
        name: str,
        body: list[ast.stmt],
        context: ModuleContext,
        search_dir: Optional[PurePath],
        search_package: str,
        path: tuple[str, ...],
        attr_path: tuple[str, ...],
        metadata: dict,
    ) -> NamespaceNode:
        children: dict[str, NamespaceNode] = {}
        declared: set[str] = set()

        def claim(member: str, node: ast.AST) -> None:
            # endpoints and children share one attribute namespace in both generated modules
            if member in declared:
                raise DuplicateNameError(member, ".".join(path), node=node, file_path=context.file_path)
            declared.add(member)

        for stmt in body:
            if isinstance(stmt, ast.ClassDef) and has_marker(stmt.decorator_list, self.namespace_markers):
                claim(stmt.name, stmt)
                children[stmt.name] = self._build(
                    name=stmt.name,
                    body=stmt.body,
                    context=context,
                    search_dir=search_dir,
                    search_package=search_package,
                    path=(*path, stmt.name),
                    attr_path=(*attr_path, stmt.name),
                    metadata={
                        "file": context.file_path,
                        "docstring": ast.get_docstring(stmt),
                        "decorators": tuple(
                            ast.unparse(d) for d in strip_markers(stmt.decorator_list, self.namespace_markers)
                        ),
                    },
                )
                continue

            # relative imports in a plain module point at siblings, not children
            if search_dir is None or not _is_child_import(stmt):
                continue
            for alias in stmt.names:
                if alias.name == "*":
                    continue
                child_name = alias.asname or alias.name
                claim(child_name, stmt)
                children[child_name] = self._load_file_namespace(
                    child_name,
                    module_name=alias.name,
                    search_dir=search_dir,
                    search_package=search_package,
                    path=(*path, child_name),
                    ref=stmt,
                    context=context,
                )

        endpoints: list[EndpointDeclaration] = extract_endpoints(
            body,
            markers=self.markers,
            context=context,
            namespace_path=path,
            attr_path=attr_path,
        )
        for ep in endpoints:
            claim(ep.name, ep.node)

        return NamespaceNode(
            name=name,
            path=path,
            context=context,
            children=children,
            endpoints=tuple(endpoints),
            metadata=metadata,
        )

    def _load_file_namespace(
        self,
        name: str,
        *,
        module_name: str,
        search_dir: PurePath,
        search_package: str,
        path: tuple[str, ...],
        ref: ast.stmt,
        context: ModuleContext,
    ) -> NamespaceNode:
        file_path = resolve_module_file(search_dir, module_name, self.source)
        if file_path is None:
            raise NamespaceNotFoundError(
                ".".join(path),
                [str(c) for c in module_candidates(search_dir, module_name)],
                node=ref,
                file_path=context.file_path,
            )

        module = _join_module(search_package, module_name)
        is_package = file_path.name == INDEX_FILE
        tree = self._parse(file_path, namespace=".".join(path))
        logger.debug("namespace %s loaded from %s", ".".join(path), file_path)

        child_context = module_context(
            tree,
            module=module,
            package=module if is_package else search_package,
            file_path=str(file_path),
        )
        return self._build(
            name=name,
            body=tree.body,
            context=child_context,
            search_dir=file_path.parent if is_package else None,
            search_package=module,
            path=path,
            attr_path=(),
            metadata={"file": str(file_path), "docstring": ast.get_docstring(tree), "decorators": ()},
        )


def _is_child_import(stmt: ast.stmt) -> bool:
    # `from . import a, b` only; `from .a import b` and `from .. import a` are ordinary imports
    return isinstance(stmt, ast.ImportFrom) and stmt.level == 1 and stmt.module is None


def resolve_root(
    path: PathLike,
    *,
    source: Optional[ContentSource] = None,
    module: Optional[str] = None,
    markers: Iterable[str] = DEFAULT_ENDPOINT_MARKERS,
    namespace_markers: Iterable[str] = DEFAULT_NAMESPACE_MARKERS,
) -> NamespaceNode:
    resolver = NamespaceResolver(source, markers=markers, namespace_markers=namespace_markers)
    return resolver.resolve_root(path, module=module)
