"""Unit tests for the dependency resolver."""

import os
from pathlib import Path

import pytest

from windoctor.core.exceptions import BinaryUnreadable, SourceNotFound
from windoctor.core.models import SearchScope
from windoctor.core.resolver import (
    DependencyResolver,
    build_search_scope,
    iter_binaries,
    normalize_module_name,
)
from windoctor.tests.fakes import FakeImportTableReader


def _touch(directory: Path, *names: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for name in names:
        (directory / name).write_bytes(b"MZ")


@pytest.fixture
def app_dir(tmp_path: Path) -> Path:
    """Application directory holding app.exe and its private DLLs."""
    directory = tmp_path / "app"
    _touch(directory, "app.exe", "a.dll", "b.dll", "c.dll")
    return directory


@pytest.fixture
def reader() -> FakeImportTableReader:
    return FakeImportTableReader()


@pytest.fixture
def resolver(reader: FakeImportTableReader) -> DependencyResolver:
    return DependencyResolver(reader)


@pytest.fixture
def scope() -> SearchScope:
    return SearchScope()


# ============================================================================
# Helpers
# ============================================================================


class TestNormalizeModuleName:
    """Tests for module-name normalization."""

    def test_lowercases_and_trims(self) -> None:
        assert normalize_module_name("  KERNEL32.DLL ") == "kernel32.dll"

    def test_bare_name_gets_dll_extension(self) -> None:
        assert normalize_module_name("user32") == "user32.dll"

    def test_other_extensions_are_kept(self) -> None:
        assert normalize_module_name("driver.SYS") == "driver.sys"


class TestBuildSearchScope:
    """Tests for conventional search scope construction."""

    def test_system_root_and_path_are_read_from_environment(self) -> None:
        environ = {
            "SystemRoot": "C:\\Windows",
            "PATH": os.pathsep.join(["/opt/bin", "", "/usr/bin"]),
        }
        scope = build_search_scope(directories=["/extra"], environ=environ)

        assert scope.directories == ("/extra",)
        assert scope.system_dirs == tuple(
            os.path.join("C:\\Windows", sub) for sub in ("System32", "SysWOW64", "System")
        )
        assert scope.path_dirs == ("/opt/bin", "/usr/bin")

    def test_environment_parts_can_be_disabled(self) -> None:
        environ = {"SystemRoot": "C:\\Windows", "PATH": "/opt/bin"}
        scope = build_search_scope(
            include_system_dirs=False, include_path_env=False, environ=environ
        )
        assert scope.system_dirs == ()
        assert scope.path_dirs == ()

    def test_missing_system_root_adds_nothing(self) -> None:
        scope = build_search_scope(environ={})
        assert scope.system_dirs == ()
        assert scope.path_dirs == ()


# ============================================================================
# Resolution
# ============================================================================


class TestResolveBasics:
    """Tests for single-level resolution."""

    def test_direct_imports_are_resolved_in_binary_dir(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll", "missing.dll"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=2)

        root = graph.root
        assert root.depth == 0
        assert root.resolved_path == str(app_dir / "app.exe")
        assert [c.module_name for c in root.children] == ["a.dll", "missing.dll"]
        assert root.children[0].resolved_path == os.path.join(str(app_dir), "a.dll")
        assert root.children[1].resolved_path is None
        assert graph.unresolved_imports == ("missing.dll",)

    def test_resolve_returns_root_node(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll"])
        root = resolver.resolve(str(app_dir / "app.exe"), scope, max_depth=1)
        assert root.module_name == "app.exe"
        assert [c.module_name for c in root.children] == ["a.dll"]

    def test_lookup_is_case_insensitive(
        self, tmp_path: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        _touch(tmp_path, "app.exe", "Foo.DLL")
        reader.set_imports("app.exe", ["FOO.dll", "foo"])

        graph = resolver.resolve_graph(str(tmp_path / "app.exe"), scope, max_depth=1)

        # "foo" normalizes to foo.dll and collapses into the first import
        assert len(graph.root.children) == 1
        assert graph.root.children[0].resolved_path == os.path.join(str(tmp_path), "Foo.DLL")

    def test_bare_module_name_gets_dll_extension(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a"])
        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=1)
        assert graph.root.children[0].resolved_path == os.path.join(str(app_dir), "a.dll")

    def test_ignored_modules_are_dropped(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports(
            "app.exe", ["api-ms-win-core-file-l1-1-0.dll", "EXT-MS-WIN-foo.dll", "a.dll"]
        )
        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=1)
        assert [c.module_name for c in graph.root.children] == ["a.dll"]
        assert graph.unresolved_imports == ()

    def test_search_directories_follow_binary_dir(
        self, tmp_path: Path, reader: FakeImportTableReader, resolver: DependencyResolver
    ) -> None:
        _touch(tmp_path / "app", "app.exe", "shared.dll")
        _touch(tmp_path / "extra", "shared.dll", "only_extra.dll")
        reader.set_imports("app.exe", ["shared.dll", "only_extra.dll"])
        scope = SearchScope(directories=(str(tmp_path / "extra"),))

        graph = resolver.resolve_graph(str(tmp_path / "app" / "app.exe"), scope, max_depth=1)

        shared, only_extra = graph.root.children
        assert shared.resolved_path == os.path.join(str(tmp_path / "app"), "shared.dll")
        assert only_extra.resolved_path == os.path.join(str(tmp_path / "extra"), "only_extra.dll")

    def test_binary_dir_can_be_excluded(
        self, tmp_path: Path, reader: FakeImportTableReader, resolver: DependencyResolver
    ) -> None:
        _touch(tmp_path / "app", "app.exe", "shared.dll")
        reader.set_imports("app.exe", ["shared.dll"])
        scope = SearchScope(include_binary_dir=False)

        graph = resolver.resolve_graph(str(tmp_path / "app" / "app.exe"), scope, max_depth=1)

        assert graph.unresolved_imports == ("shared.dll",)

    def test_negative_depth_is_rejected(
        self, app_dir: Path, resolver: DependencyResolver, scope
    ) -> None:
        with pytest.raises(ValueError):
            resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=-1)


class TestResolveDepth:
    """Tests for depth bounding and shared nodes."""

    def test_max_depth_zero_keeps_direct_imports_childless(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll", "b.dll"])
        reader.set_imports("a.dll", ["c.dll"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=0)

        assert [c.module_name for c in graph.root.children] == ["a.dll", "b.dll"]
        assert all(not c.children for c in graph.root.children)
        assert graph.max_depth_reached is True
        assert reader.read_count("a.dll") == 0

    def test_depth_two_expands_direct_imports(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll"])
        reader.set_imports("a.dll", ["c.dll"])
        reader.set_imports("c.dll", ["b.dll"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=2)

        a = graph.root.children[0]
        c = a.children[0]
        assert (a.depth, c.depth) == (1, 2)
        assert c.children == ()
        assert graph.max_depth_reached is True

    def test_fully_explored_graph_does_not_flag_depth(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll"])
        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=3)
        assert graph.max_depth_reached is False

    def test_module_expanded_shallower_clears_depth_flag(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        """b sits at the bound under a but is also a direct import, so nothing is cut off."""
        reader.set_imports("app.exe", ["a.dll", "b.dll"])
        reader.set_imports("a.dll", ["b.dll"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=2)

        a, b = graph.root.children
        assert a.children[0].depth == 2
        assert b.depth == 1
        assert graph.max_depth_reached is False

    def test_module_only_reached_at_bound_keeps_depth_flag(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll", "b.dll"])
        reader.set_imports("a.dll", ["c.dll"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=2)

        assert graph.max_depth_reached is True

    def test_same_module_at_same_depth_is_one_node(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll", "b.dll"])
        reader.set_imports("a.dll", ["c.dll"])
        reader.set_imports("b.dll", ["C.DLL"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=3)

        a, b = graph.root.children
        assert a.children[0] is b.children[0]
        assert reader.read_count("c.dll") == 1

    def test_diamond_shares_resolution_and_parses_once(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        """B reached at depth 2 through A and at depth 1 directly."""
        reader.set_imports("app.exe", ["a.dll", "b.dll"])
        reader.set_imports("a.dll", ["b.dll"])
        reader.set_imports("b.dll", ["c.dll"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=2)

        a, top_b = graph.root.children
        nested_b = a.children[0]
        assert (nested_b.depth, top_b.depth) == (2, 1)
        assert nested_b.resolution is top_b.resolution
        assert [c.module_name for c in top_b.children] == ["c.dll"]
        assert reader.read_count("b.dll") == 1
        assert top_b.resolution.parse_count == 1

    def test_self_import_terminates(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll", "app.exe"])
        reader.set_imports("a.dll", ["a.dll", "b.dll"])
        reader.set_imports("b.dll", ["a.dll"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=10)

        a, app_again = graph.root.children
        assert app_again.children == ()
        assert [c.module_name for c in a.children] == ["a.dll", "b.dll"]
        assert a.children[0].children == ()
        assert reader.read_count("a.dll") == 1
        assert reader.read_count("app.exe") == 1

    def test_unresolved_nodes_have_no_children(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["ghost.dll"])
        reader.set_imports("ghost.dll", ["a.dll"])

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=3)

        assert graph.root.children[0].children == ()
        assert reader.read_count("ghost.dll") == 0


class TestResolveErrors:
    """Tests for unreadable and malformed binaries."""

    def test_missing_root_raises(self, tmp_path: Path, resolver: DependencyResolver, scope) -> None:
        with pytest.raises(BinaryUnreadable) as exc_info:
            resolver.resolve_graph(str(tmp_path / "nope.exe"), scope, max_depth=1)
        assert exc_info.value.path == str(tmp_path / "nope.exe")

    def test_unreadable_root_raises(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.mark_unreadable("app.exe")
        with pytest.raises(BinaryUnreadable):
            resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=1)

    def test_malformed_root_is_childless_with_warning(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.mark_malformed("app.exe")

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=1)

        assert graph.root.children == ()
        assert len(graph.warnings) == 1
        assert "no imports" in graph.warnings[0]

    def test_malformed_dependency_is_childless(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll"])
        reader.mark_malformed("a.dll")

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=3)

        a = graph.root.children[0]
        assert a.resolved
        assert a.children == ()
        assert len(graph.warnings) == 1

    def test_unreadable_dependency_is_a_warning(
        self, app_dir: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("app.exe", ["a.dll", "b.dll"])
        reader.mark_unreadable("a.dll")

        graph = resolver.resolve_graph(str(app_dir / "app.exe"), scope, max_depth=3)

        assert [c.module_name for c in graph.root.children] == ["a.dll", "b.dll"]
        assert graph.root.children[0].children == ()
        assert any("Cannot read dependency" in w for w in graph.warnings)


# ============================================================================
# Directory walks
# ============================================================================


class TestWalk:
    """Tests for resolving every binary in a directory."""

    @pytest.fixture
    def tree(self, tmp_path: Path) -> Path:
        _touch(tmp_path, "tool.exe", "Lib.DLL", "readme.txt")
        _touch(tmp_path / "sub", "nested.exe")
        return tmp_path

    def test_iter_binaries_is_sorted_and_filtered(self, tree: Path) -> None:
        names = [os.path.basename(p) for p in iter_binaries(str(tree))]
        assert names == ["Lib.DLL", "tool.exe"]

    def test_iter_binaries_recursive(self, tree: Path) -> None:
        names = [os.path.basename(p) for p in iter_binaries(str(tree), recursive=True)]
        assert names == ["Lib.DLL", "tool.exe", "nested.exe"]

    def test_iter_binaries_pattern_is_case_insensitive(self, tree: Path) -> None:
        names = [os.path.basename(p) for p in iter_binaries(str(tree), pattern="*.EXE")]
        assert names == ["tool.exe"]

    def test_walk_resolves_each_binary(
        self, tree: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.set_imports("tool.exe", ["lib.dll", "gone.dll"])

        graphs = resolver.walk(str(tree), scope, max_depth=1)

        assert [g.root.module_name for g in graphs] == ["Lib.DLL", "tool.exe"]
        assert graphs[1].unresolved_imports == ("gone.dll",)

    def test_walk_skips_unreadable_binaries(
        self, tree: Path, reader: FakeImportTableReader, resolver: DependencyResolver, scope
    ) -> None:
        reader.mark_unreadable("lib.dll")
        graphs = resolver.walk(str(tree), scope, max_depth=1)
        assert [g.root.module_name for g in graphs] == ["tool.exe"]

    def test_walk_missing_directory_raises(
        self, tmp_path: Path, resolver: DependencyResolver, scope
    ) -> None:
        with pytest.raises(SourceNotFound):
            resolver.walk(str(tmp_path / "absent"), scope, max_depth=1)
