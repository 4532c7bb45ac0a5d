from archgraph.path_resolver import (
    PathResolver,
    build_import_edges,
    normalize_path,
    resolve_import_to_file,
)
from conftest import make_file

KNOWN = ["src/app.ts", "src/utils/helpers.ts", "lib/helpers.py", "src/components/Button.tsx"]


def test_normalize_strips_dot_prefix_and_slashes():
    assert normalize_path("./src//app.ts") == "src/app.ts"
    assert normalize_path("././a/b") == "a/b"
    assert normalize_path("src\\win\\path.ts") == "src/win/path.ts"


def test_exact_match_after_normalisation():
    resolve = PathResolver(KNOWN)
    assert resolve("./src/app.ts") == "src/app.ts"


def test_extension_stripped_match():
    resolve = PathResolver(KNOWN)
    assert resolve("src/components/Button") == "src/components/Button.tsx"


def test_unique_basename_match():
    resolve = PathResolver(KNOWN)
    assert resolve("Button.tsx") == "src/components/Button.tsx"
    assert resolve("somewhere/else/app.ts") == "src/app.ts"


def test_ambiguous_basename_is_rejected():
    resolve = PathResolver(["a/index.ts", "b/index.ts"])
    assert resolve("index.ts") is None


def test_garbage_and_empty_candidates():
    resolve = PathResolver(KNOWN)
    assert resolve("") is None
    assert resolve("   ") is None
    assert resolve("does/not/exist.go") is None


def test_import_edges_are_deduplicated_and_skip_externals():
    files = [
        make_file("src/app.ts", imports=["@/src/utils/helpers", "@/src/utils/helpers", "react"]),
        make_file("src/utils/helpers.ts"),
    ]
    assert build_import_edges(files) == [("src/app.ts", "src/utils/helpers.ts")]


def test_resolve_relative_import_with_parent_segments():
    all_files = {"src/a/x.ts", "src/b/y.ts", "src/b/index.ts"}
    assert resolve_import_to_file("../b/y", "src/a/x.ts", all_files) == "src/b/y.ts"
    assert resolve_import_to_file("../b", "src/a/x.ts", all_files) == "src/b/index.ts"


def test_resolve_alias_and_python_package_init():
    all_files = {"pkg/__init__.py", "pkg/mod.py"}
    assert resolve_import_to_file("@/pkg/mod", "main.py", all_files) == "pkg/mod.py"
    assert resolve_import_to_file("@/pkg", "main.py", all_files) == "pkg/__init__.py"


def test_bare_specifier_does_not_resolve():
    assert resolve_import_to_file("react", "src/app.ts", {"react.ts"}) is None
