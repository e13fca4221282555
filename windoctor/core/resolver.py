"""Dependency resolver: static, depth-bounded import-table walk.

Given a root binary, reads its import table, locates each imported
module within a SearchScope and recurses into the located binaries.
Nodes live in a per-call arena keyed by (module, depth); the same
module reached at the same depth from two parents is a single shared
node, and every node naming a module shares one Resolution, so a
binary's import table is read at most once per call.

The root is always expanded. Any other node at depth ``d`` is expanded
only when it was located and ``d < max_depth``, and only when the
module has not already been visited at a depth ``<= d``.
"""

import fnmatch
import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

from .exceptions import BinaryUnreadable, MalformedImportTable, SourceNotFound
from .models import DependencyGraph, DependencyNode, Resolution, SearchScope
from .ports import DependencyResolverPort, ImportTablePort

logger = logging.getLogger(__name__)

BINARY_EXTENSIONS = (".exe", ".dll")
SYSTEM_SUBDIRS = ("System32", "SysWOW64", "System")


def normalize_module_name(name: str) -> str:
    """Canonical lookup key for a module: trimmed, lowercased, ``.dll`` if bare."""
    normalized = name.strip().lower()
    if normalized and not os.path.splitext(normalized)[1]:
        normalized += ".dll"
    return normalized


def build_search_scope(
    directories: list[str] | tuple[str, ...] = (),
    include_system_dirs: bool = True,
    include_path_env: bool = True,
    ignored_modules: list[str] | tuple[str, ...] = ("api-ms-win-*", "ext-ms-win-*"),
    include_binary_dir: bool = True,
    environ: Mapping[str, str] | None = None,
) -> SearchScope:
    """Build the conventional search scope from explicit dirs and the environment.

    Args:
        directories: Extra directories, searched after the importing
            binary's own directory.
        include_system_dirs: Append ``%SystemRoot%`` System32, SysWOW64
            and System when SystemRoot is set.
        include_path_env: Append the ``PATH`` entries last.
        ignored_modules: Glob patterns of module names never resolved
            (API-set virtual modules by default).
        include_binary_dir: Search the importing binary's directory first.
        environ: Environment to read; defaults to ``os.environ``.

    Returns:
        SearchScope in precedence order.
    """
    env = os.environ if environ is None else environ

    system_dirs: tuple[str, ...] = ()
    system_root = env.get("SystemRoot") or env.get("SYSTEMROOT")
    if include_system_dirs and system_root:
        system_dirs = tuple(os.path.join(system_root, sub) for sub in SYSTEM_SUBDIRS)

    path_dirs: tuple[str, ...] = ()
    if include_path_env:
        path_value = env.get("PATH") or env.get("Path") or ""
        path_dirs = tuple(p for p in path_value.split(os.pathsep) if p.strip())

    return SearchScope(
        directories=tuple(directories),
        system_dirs=system_dirs,
        path_dirs=path_dirs,
        include_binary_dir=include_binary_dir,
        ignored_modules=tuple(ignored_modules),
    )


@dataclass
class _ResolveContext:
    """Mutable state for one resolve_graph call. Never shared between calls."""

    scope: SearchScope
    max_depth: int
    resolutions: dict[str, Resolution] = field(default_factory=dict)
    visited_depth: dict[str, int] = field(default_factory=dict)
    arena: dict[tuple[str, int], DependencyNode] = field(default_factory=dict)
    listings: dict[str, dict[str, str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    # Modules left unexpanded at the bound and not expanded anywhere shallower.
    depth_limited: set[str] = field(default_factory=set)

    @property
    def max_depth_reached(self) -> bool:
        return bool(self.depth_limited)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


class DependencyResolver(DependencyResolverPort):
    """Resolves transitive imports using an ImportTablePort for parsing."""

    def __init__(self, import_reader: ImportTablePort):
        self.import_reader = import_reader

    def resolve(
        self, root_path: str, search_scope: SearchScope, max_depth: int
    ) -> DependencyNode:
        """Resolve ``root_path`` and return the root node of its graph.

        Raises:
            BinaryUnreadable: If the root binary cannot be opened.
        """
        return self.resolve_graph(root_path, search_scope, max_depth).root

    def resolve_graph(
        self, root_path: str, search_scope: SearchScope, max_depth: int
    ) -> DependencyGraph:
        """Resolve ``root_path`` and return the full graph with diagnostics.

        Args:
            root_path: Binary to analyse.
            search_scope: Where imported modules are looked up.
            max_depth: Depth bound for recursion below the root's direct
                imports. 0 and 1 both stop at the direct imports.

        Returns:
            DependencyGraph rooted at ``root_path``.

        Raises:
            BinaryUnreadable: If the root binary cannot be opened.
            ValueError: If ``max_depth`` is negative.
        """
        if max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {max_depth}")
        if not os.path.isfile(root_path):
            raise BinaryUnreadable(root_path, "no such file")

        ctx = _ResolveContext(scope=search_scope, max_depth=max_depth)
        root_key = normalize_module_name(os.path.basename(root_path))
        resolution = Resolution(module_name=os.path.basename(root_path), resolved_path=root_path)
        ctx.resolutions[root_key] = resolution
        ctx.visited_depth[root_key] = 0

        imports = self._read_imports(ctx, resolution, is_root=True)
        root_dir = os.path.dirname(os.path.abspath(root_path))
        children = tuple(
            self._visit(ctx, name, root_dir, depth=1) for name in imports
        )
        root = DependencyNode(
            module_name=resolution.module_name,
            resolved_path=root_path,
            depth=0,
            children=children,
            resolution=resolution,
        )

        logger.debug(
            f"Resolved {root_path}: {len(ctx.resolutions)} modules, "
            f"max_depth_reached={ctx.max_depth_reached}"
        )
        return DependencyGraph(
            root=root,
            max_depth=max_depth,
            max_depth_reached=ctx.max_depth_reached,
            warnings=tuple(ctx.warnings),
        )

    def walk(
        self,
        directory: str,
        search_scope: SearchScope,
        max_depth: int,
        pattern: str = "*",
        recursive: bool = False,
    ) -> list[DependencyGraph]:
        """Resolve every ``.exe``/``.dll`` under ``directory`` matching ``pattern``.

        Unreadable files are skipped with a warning.

        Raises:
            SourceNotFound: If ``directory`` does not exist.
        """
        if not os.path.isdir(directory):
            raise SourceNotFound(directory)

        graphs = []
        for path in iter_binaries(directory, pattern, recursive):
            try:
                graphs.append(self.resolve_graph(path, search_scope, max_depth))
            except BinaryUnreadable as e:
                logger.warning(f"Skipping {path}: {e}")
        return graphs

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _visit(
        self, ctx: _ResolveContext, name: str, importer_dir: str | None, depth: int
    ) -> DependencyNode:
        key = normalize_module_name(name)

        existing = ctx.arena.get((key, depth))
        if existing is not None:
            return existing

        resolution = ctx.resolutions.get(key)
        if resolution is None:
            resolution = Resolution(
                module_name=name.strip(),
                resolved_path=self._locate(ctx, name.strip(), importer_dir),
            )
            ctx.resolutions[key] = resolution

        children: tuple[DependencyNode, ...] = ()
        seen_at = ctx.visited_depth.get(key)
        if resolution.resolved and (seen_at is None or seen_at > depth):
            ctx.visited_depth[key] = depth
            if depth < ctx.max_depth:
                ctx.depth_limited.discard(key)
                imports = self._read_imports(ctx, resolution, is_root=False)
                own_dir = os.path.dirname(resolution.resolved_path)
                children = tuple(
                    self._visit(ctx, child, own_dir, depth + 1) for child in imports
                )
            else:
                ctx.depth_limited.add(key)

        node = DependencyNode(
            module_name=name.strip(),
            resolved_path=resolution.resolved_path,
            depth=depth,
            children=children,
            resolution=resolution,
        )
        ctx.arena[(key, depth)] = node
        return node

    def _read_imports(
        self, ctx: _ResolveContext, resolution: Resolution, is_root: bool
    ) -> tuple[str, ...]:
        """Return the resolution's imports, parsing the binary on first use."""
        if resolution.imports is not None:
            return resolution.imports

        path = resolution.resolved_path
        resolution.parse_count += 1
        try:
            declared = self.import_reader.read_imports(path)
        except BinaryUnreadable as e:
            if is_root:
                raise
            ctx.warn(f"Cannot read dependency {path}: {e.reason or e}")
            declared = []
        except MalformedImportTable as e:
            ctx.warn(f"Treating {path} as having no imports: {e.reason or e}")
            declared = []

        resolution.imports = self._collapse(ctx.scope, declared)
        return resolution.imports

    @staticmethod
    def _collapse(scope: SearchScope, names: list[str]) -> tuple[str, ...]:
        """Drop blanks, ignored modules and case-insensitive duplicates."""
        seen: set[str] = set()
        kept = []
        for name in names:
            key = normalize_module_name(name)
            if not key or key in seen:
                continue
            seen.add(key)
            if any(fnmatch.fnmatchcase(key, p.lower()) for p in scope.ignored_modules):
                continue
            kept.append(name.strip())
        return tuple(kept)

    def _locate(
        self, ctx: _ResolveContext, name: str, importer_dir: str | None
    ) -> str | None:
        """First match for ``name`` in precedence order, or None."""
        if os.path.isabs(name) or os.path.dirname(name):
            return name if os.path.isfile(name) else None

        key = normalize_module_name(name)

        for directory in ctx.scope.candidates(importer_dir):
            listing = ctx.listings.get(directory.lower())
            if listing is None:
                listing = _list_files(directory)
                ctx.listings[directory.lower()] = listing
            actual = listing.get(key)
            if actual is not None:
                return os.path.join(directory, actual)
        return None


def _list_files(directory: str) -> dict[str, str]:
    """Map lowercased file names to their on-disk spelling."""
    try:
        with os.scandir(directory) as entries:
            return {e.name.lower(): e.name for e in entries if e.is_file()}
    except OSError:
        return {}


def iter_binaries(directory: str, pattern: str = "*", recursive: bool = False) -> Iterator[str]:
    """Yield ``.exe``/``.dll`` files in ``directory`` matching ``pattern``.

    Matching is case-insensitive on the file name. Output is sorted per
    directory for stable results.
    """
    lowered = pattern.lower()
    for current, dirs, files in os.walk(directory):
        dirs.sort()
        for filename in sorted(files):
            name = filename.lower()
            if not name.endswith(BINARY_EXTENSIONS):
                continue
            if fnmatch.fnmatchcase(name, lowered):
                yield os.path.join(current, filename)
        if not recursive:
            break
