import textwrap
from pathlib import PurePath

import pytest

from rpcc.errors import DuplicateNameError, NamespaceNotFoundError, NamespaceParseError, RootNotFoundError
from rpcc.resolver.namespace import module_name_for, resolve_module_file, resolve_root
from rpcc.resolver.sources import MemorySource


def src(s: str) -> str:
    return textwrap.dedent(s)


ROOT = src(
    """
    '''Shop API.'''
    from rpcc.runtime import endpoint, namespace
    from . import orders

    @endpoint
    def ping() -> None:
        return None

    @namespace
    class admin:
        '''Admin tools.'''

        @endpoint
        async def stats() -> int:
            return 1
    """
)


def test_inline_namespace_resolves_without_touching_files():
    source = MemorySource(
        {
            "api/__init__.py": src(
                """
                from rpcc.runtime import endpoint, namespace

                @namespace
                class admin:
                    @endpoint
                    def stats() -> int:
                        return 1
                """
            )
        }
    )
    tree = resolve_root("api/__init__.py", source=source)

    assert tree.name == "api"
    assert list(tree.children) == ["admin"]
    admin = tree.children["admin"]
    assert [e.name for e in admin.endpoints] == ["stats"]
    assert admin.endpoints[0].path == ("admin", "stats")
    assert admin.endpoints[0].attr_path == ("admin", "stats")
    assert source.reads == ["api/__init__.py"]


def test_file_namespace_prefers_suffixed_file():
    source = MemorySource(
        {
            "api/__init__.py": ROOT,
            "api/orders.py": src(
                """
                from rpcc.runtime import endpoint

                @endpoint
                def add(a: int, b: int) -> int:
                    return a + b
                """
            ),
        }
    )
    tree = resolve_root("api/__init__.py", source=source)

    orders = tree.children["orders"]
    assert orders.metadata["file"] == "api/orders.py"
    assert orders.context.module == "api.orders"
    assert [e.qualified_name for e in orders.endpoints] == ["orders.add"]


def test_file_namespace_falls_back_to_index_file():
    source = MemorySource(
        {
            "api/__init__.py": ROOT,
            "api/orders/__init__.py": src(
                """
                from rpcc.runtime import endpoint
                from . import items

                @endpoint
                def count() -> int:
                    return 0
                """
            ),
            "api/orders/items.py": src(
                """
                from rpcc.runtime import endpoint

                @endpoint
                def first() -> str:
                    return "x"
                """
            ),
        }
    )
    tree = resolve_root("api/__init__.py", source=source)

    orders = tree.children["orders"]
    assert orders.metadata["file"] == "api/orders/__init__.py"
    items = orders.children["items"]
    assert items.context.module == "api.orders.items"
    assert items.endpoints[0].path == ("orders", "items", "first")


def test_missing_namespace_file_is_a_named_error():
    source = MemorySource({"api/__init__.py": ROOT})
    with pytest.raises(NamespaceNotFoundError) as exc:
        resolve_root("api/__init__.py", source=source)

    assert exc.value.namespace == "orders"
    assert "api/orders.py" in str(exc.value)
    assert "api/orders/__init__.py" in str(exc.value)


def test_compiled_sibling_is_not_a_namespace_source():
    source = MemorySource({"api/__init__.py": ROOT, "api/orders.cpython-312-x86_64-linux-gnu.so": ""})
    with pytest.raises(NamespaceNotFoundError) as exc:
        resolve_root("api/__init__.py", source=source)
    assert exc.value.candidates == ("api/orders.py", "api/orders/__init__.py")


@pytest.mark.parametrize(
    "body",
    [
        "@endpoint\ndef add() -> int:\n    return 1\n\n\n@endpoint\ndef add() -> int:\n    return 2\n",
        "from . import orders\n\n\n@endpoint\ndef orders() -> int:\n    return 1\n",
        "@namespace\nclass admin:\n    pass\n\n\n@namespace\nclass admin:\n    pass\n",
    ],
)
def test_name_declared_twice_in_one_namespace_is_rejected(body):
    source = MemorySource(
        {
            "api/__init__.py": "from rpcc.runtime import endpoint, namespace\n" + body,
            "api/orders.py": "x = 1\n",
        }
    )
    with pytest.raises(DuplicateNameError) as exc:
        resolve_root("api/__init__.py", source=source)
    assert exc.value.namespace == ""
    assert "more than once in the root namespace" in str(exc.value)


def test_same_name_in_different_namespaces_is_fine():
    source = MemorySource(
        {
            "api/__init__.py": src(
                """
                from rpcc.runtime import endpoint, namespace
                from . import orders

                @endpoint
                def add() -> int:
                    return 1

                @namespace
                class admin:
                    @endpoint
                    def add() -> int:
                        return 2
                """
            ),
            "api/orders.py": "from rpcc.runtime import endpoint\n\n@endpoint\ndef add() -> int:\n    return 3\n",
        }
    )
    tree = resolve_root("api/__init__.py", source=source)
    assert [ep.qualified_name for ep in tree.iter_endpoints()] == ["add", "orders.add", "admin.add"]


def test_unparsable_namespace_file_is_a_named_error():
    source = MemorySource({"api/__init__.py": ROOT, "api/orders.py": "def broken(:\n"})
    with pytest.raises(NamespaceParseError) as exc:
        resolve_root("api/__init__.py", source=source)
    assert exc.value.namespace == "orders"
    assert "api/orders.py" in str(exc.value)


def test_missing_root_is_reported():
    with pytest.raises(RootNotFoundError):
        resolve_root("nope/__init__.py", source=MemorySource({}))


def test_plain_module_relative_imports_are_not_children():
    source = MemorySource(
        {
            "api/__init__.py": ROOT,
            "api/orders.py": src(
                """
                from rpcc.runtime import endpoint
                from . import helpers

                @endpoint
                def add(a: int, b: int) -> int:
                    return a + b
                """
            ),
        }
    )
    tree = resolve_root("api/__init__.py", source=source)
    assert dict(tree.children["orders"].children) == {}


def test_alias_names_the_namespace_and_module_selects_the_file():
    source = MemorySource(
        {
            "api/__init__.py": "from . import orders as shop\n",
            "api/orders.py": "from rpcc.runtime import endpoint\n\n@endpoint\ndef add() -> int:\n    return 1\n",
        }
    )
    tree = resolve_root("api/__init__.py", source=source)
    shop = tree.children["shop"]
    assert shop.context.module == "api.orders"
    assert shop.endpoints[0].path == ("shop", "add")


def test_file_referenced_twice_is_parsed_twice():
    source = MemorySource(
        {
            "api/__init__.py": "from . import orders\nfrom . import orders as again\n",
            "api/orders.py": "x = 1\n",
        }
    )
    tree = resolve_root("api/__init__.py", source=source)
    assert list(tree.children) == ["orders", "again"]
    assert source.reads.count("api/orders.py") == 2


def test_children_keep_source_order_and_metadata():
    source = MemorySource(
        {
            "api/__init__.py": ROOT,
            "api/orders.py": "'''Orders.'''\n",
        }
    )
    tree = resolve_root("api/__init__.py", source=source)

    assert list(tree.children) == ["orders", "admin"]
    assert tree.metadata["docstring"] == "Shop API."
    assert tree.children["admin"].metadata["docstring"] == "Admin tools."
    assert tree.children["orders"].metadata["docstring"] == "Orders."


def test_tree_is_read_only():
    source = MemorySource({"api/__init__.py": ROOT, "api/orders.py": ""})
    tree = resolve_root("api/__init__.py", source=source)
    with pytest.raises(TypeError):
        tree.children["x"] = tree  # type: ignore[index]


def test_resolve_module_file_order():
    both = MemorySource({"pkg/a.py": "", "pkg/a/__init__.py": ""})
    assert str(resolve_module_file(PurePath("pkg"), "a", both)) == "pkg/a.py"


def test_module_name_for_walks_packages():
    source = MemorySource(
        {
            "src/shop/__init__.py": "",
            "src/shop/api/__init__.py": "",
            "tools/main.py": "",
        }
    )
    assert module_name_for("src/shop/api/__init__.py", source) == "shop.api"
    assert module_name_for("tools/main.py", source) == "main"
