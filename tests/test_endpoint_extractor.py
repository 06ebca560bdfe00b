import ast
import textwrap

import pytest

from rpcc.domain.models import ModuleContext
from rpcc.errors import UnsupportedEndpointError
from rpcc.extractors.endpoints import decorator_name, extract_endpoints

CTX = ModuleContext(module="api", package="api", file_path="api/__init__.py")


def endpoints_of(s: str, **kwargs):
    tree = ast.parse(textwrap.dedent(s))
    return extract_endpoints(tree.body, context=CTX, **kwargs)


def test_only_marked_functions_are_endpoints():
    eps = endpoints_of(
        """
        from rpcc import runtime
        from rpcc.runtime import endpoint

        @endpoint
        def a() -> int:
            return 1

        @runtime.endpoint
        async def b(x: int) -> int:
            return x

        @rpcc.runtime.endpoint()
        def c():
            pass

        def helper():
            pass

        @other
        def d():
            pass
        """
    )
    assert [e.name for e in eps] == ["a", "b", "c"]
    assert [e.is_async for e in eps] == [False, True, False]


def test_declaration_order_is_preserved():
    eps = endpoints_of(
        """
        @endpoint
        def f1(): pass
        @endpoint
        def f2(): pass
        @endpoint
        def f3(): pass
        """
    )
    assert [e.name for e in eps] == ["f1", "f2", "f3"]


def test_marker_is_stripped_and_other_decorators_kept():
    eps = endpoints_of(
        """
        @audit("x")
        @endpoint
        def f(a: int) -> int:
            return a
        """
    )
    node = eps[0].node
    assert [decorator_name(d) for d in node.decorator_list] == ["audit"]


def test_source_node_is_not_mutated():
    tree = ast.parse("@endpoint\ndef f(): pass\n")
    extract_endpoints(tree.body, context=CTX)
    assert len(tree.body[0].decorator_list) == 1


def test_params_returns_and_paths():
    eps = endpoints_of(
        """
        @endpoint
        def create(name: str, qty: int = 1, *, note: "Optional[str]" = None) -> Order:
            return Order(name, qty)
        """,
        namespace_path=("orders",),
        attr_path=("Orders",),
    )
    ep = eps[0]
    assert [(p.name, p.annotation, p.keyword_only) for p in ep.params] == [
        ("name", "str", False),
        ("qty", "int", False),
        ("note", "'Optional[str]'", True),
    ]
    assert ep.returns == "Order"
    assert ep.path == ("orders", "create")
    assert ep.qualified_name == "orders.create"
    assert ep.attr_path == ("Orders", "create")
    assert ep.module == "api"
    assert {"str", "int", "Optional", "Order"} <= ep.signature_names


def test_names_in_defaults_are_signature_names():
    ep = endpoints_of(
        """
        @endpoint
        def page(limit: int = PAGE_SIZE, *, order: str = defaults.ORDER, tag: str = "PAGE") -> int:
            return limit
        """
    )[0]
    assert {"PAGE_SIZE", "defaults"} <= ep.signature_names
    assert "PAGE" not in ep.signature_names


def test_missing_return_type_means_unit():
    ep = endpoints_of("@endpoint\ndef f(): pass\n")[0]
    assert ep.returns is None


@pytest.mark.parametrize("first", ["self", "cls"])
def test_implicit_receiver_is_rejected(first):
    with pytest.raises(UnsupportedEndpointError) as exc:
        endpoints_of(f"@endpoint\ndef f({first}, x: int): pass\n", namespace_path=("orders",))
    assert exc.value.endpoint == "orders.f"
    assert first in str(exc.value)
    assert "line 2" in str(exc.value)


def test_variadic_parameters_are_rejected():
    with pytest.raises(UnsupportedEndpointError):
        endpoints_of("@endpoint\ndef f(*args): pass\n")
    with pytest.raises(UnsupportedEndpointError):
        endpoints_of("@endpoint\ndef f(**kwargs): pass\n")


def test_custom_marker():
    eps = endpoints_of(
        """
        @rpc.export
        def f(): pass

        @endpoint
        def g(): pass
        """,
        markers=("rpc.export",),
    )
    assert [e.name for e in eps] == ["f"]
