from __future__ import annotations

import ast
from typing import Iterable, Optional


def _line_from_source(source: str, line_no: int) -> Optional[str]:
    if line_no <= 0:
        return None
    lines = source.splitlines()
    if line_no > len(lines):
        return None
    return lines[line_no - 1].strip()


def _format_with_context(
    message: str,
    *,
    source: Optional[str] = None,
    node: Optional[ast.AST] = None,
    file_path: Optional[str] = None,
) -> str:
    line = getattr(node, "lineno", None) if node is not None else None
    if line is None:
        return f"{message} ({file_path})" if file_path else message

    col = getattr(node, "col_offset", None)
    location = f"Location: line {line}, column {(col + 1) if col is not None else 1}"
    if file_path:
        location = f"{location} in {file_path}"

    details = [location]
    if source is not None:
        code = _line_from_source(source, line)
        if code:
            details.append(f"Code: {code}")
    return f"{message}\n" + "\n".join(details)


class GenerationError(Exception):
    """Base build-time error. Every subclass aborts the build."""

    def __init__(
        self,
        message: str,
        *,
        node: Optional[ast.AST] = None,
        source: Optional[str] = None,
        file_path: Optional[str] = None,
    ):
        super().__init__(_format_with_context(message, source=source, node=node, file_path=file_path))


class RootNotFoundError(GenerationError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Root source not found: {path}")


class NamespaceNotFoundError(GenerationError):
    """A namespace reference with no inline body and no file behind it."""

    def __init__(self, namespace: str, candidates: Iterable[str], **kwargs):
        self.namespace = namespace
        self.candidates = tuple(candidates)
        tried = ", ".join(self.candidates) or "-"
        super().__init__(
            f"Namespace '{namespace}' has no inline content and no source file (tried: {tried})",
            **kwargs,
        )


class NamespaceParseError(GenerationError):
    def __init__(self, namespace: str, file_path: str, exc: SyntaxError):
        self.namespace = namespace
        self.file_path = file_path
        where = f"line {exc.lineno}" if exc.lineno else "unknown line"
        super().__init__(f"Namespace '{namespace}' failed to parse ({file_path}, {where}): {exc.msg}")


class UnsupportedEndpointError(GenerationError):
    def __init__(self, endpoint: str, reason: str, **kwargs):
        self.endpoint = endpoint
        super().__init__(f"Endpoint '{endpoint}' has an unsupported shape: {reason}", **kwargs)


class IdentifierCollisionError(GenerationError):
    def __init__(self, identifier: int, first: str, second: str):
        self.identifier = identifier
        self.first = first
        self.second = second
        super().__init__(
            f"Endpoints '{first}' and '{second}' derive the same identifier {identifier:#018x}; "
            "change one of their signatures or bodies"
        )


class NameCollisionError(GenerationError):
    def __init__(self, name: str, roots: Iterable[str]):
        self.name = name
        self.roots = tuple(roots)
        super().__init__(
            f"Top-level client name '{name}' is contributed by more than one root: {', '.join(self.roots)}"
        )


class DuplicateNameError(GenerationError):
    """One namespace declares the same endpoint or child name twice."""

    def __init__(self, name: str, namespace: str, **kwargs):
        self.name = name
        self.namespace = namespace
        where = f"namespace '{namespace}'" if namespace else "the root namespace"
        super().__init__(f"Name '{name}' is declared more than once in {where}", **kwargs)


class ConfigError(GenerationError):
    """Invalid build configuration."""
