from __future__ import annotations

import ast
import hashlib
from typing import Iterable

from rpcc.domain.models import EndpointDeclaration
from rpcc.errors import IdentifierCollisionError

IDENTIFIER_BYTES = 8


def canonical_form(node: ast.AST) -> str:
    """
    Formatting-independent text of a declaration.

    Positions are left out, so whitespace, comments and line numbers never change
    the result; names, parameter order, annotations, decorators and body do.
    """
    return ast.dump(node, annotate_fields=True, include_attributes=False)


def identifier_for_node(node: ast.AST) -> int:
    digest = hashlib.blake2b(canonical_form(node).encode("utf-8"), digest_size=IDENTIFIER_BYTES).digest()
    return int.from_bytes(digest, "little")


def derive_identifier(endpoint: EndpointDeclaration) -> int:
    """The routing key of an endpoint. Both code generators call this, never a cache."""
    return identifier_for_node(endpoint.node)


def check_unique(entries: Iterable[tuple[int, str]]) -> None:
    """
    entries: (identifier, qualified name) pairs.
    Raises IdentifierCollisionError on the first identifier seen twice.
    """
    seen: dict[int, str] = {}
    for identifier, name in entries:
        if identifier in seen:
            raise IdentifierCollisionError(identifier, seen[identifier], name)
        seen[identifier] = name
