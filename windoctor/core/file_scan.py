"""Plain-text log scan.

Counts, for each pattern, how many files under a root contain at least
one matching line, and keeps the first matching lines as samples. The
patterns are the same regular expressions the filter engine matches
against event messages.
"""

import fnmatch
import logging
import os
from collections.abc import Iterable, Iterator

from .exceptions import SourceNotFound
from .filter_engine import FilterEngine
from .models import FileSample, FileScanSummary

logger = logging.getLogger(__name__)


class TextLogScanner:
    """Scans plain-text files under a root for pattern hits.

    Args:
        root: A file or a directory, walked recursively.
        patterns: Regular expressions matched against each line.
        file_glob: Case-insensitive glob on file names; None scans every file.
        max_samples: Maximum number of sample lines kept across all files.

    Raises:
        InvalidPattern: If a pattern fails to compile.
    """

    def __init__(
        self,
        root: str,
        patterns: Iterable[str],
        file_glob: str | None = None,
        max_samples: int = 20,
    ):
        if max_samples < 0:
            raise ValueError(f"max_samples must be >= 0, got {max_samples}")
        patterns = list(patterns)
        self.root = root
        self.file_glob = file_glob
        self.max_samples = max_samples
        self._matchers = tuple(zip(patterns, FilterEngine.compile_patterns(patterns)))

    @property
    def patterns(self) -> tuple[str, ...]:
        return tuple(pattern for pattern, _ in self._matchers)

    def validate(self) -> None:
        if not os.path.exists(self.root):
            raise SourceNotFound(self.root)

    def files(self) -> Iterator[str]:
        """Yield the files to scan, sorted per directory."""
        if os.path.isfile(self.root):
            yield self.root
            return

        lowered = self.file_glob.lower() if self.file_glob else None
        for current, dirs, files in os.walk(self.root):
            dirs.sort()
            for filename in sorted(files):
                if lowered is None or fnmatch.fnmatchcase(filename.lower(), lowered):
                    yield os.path.join(current, filename)

    def scan(self) -> FileScanSummary:
        """Scan every file. Blocking.

        Unreadable files are skipped with a warning. Undecodable bytes
        are replaced rather than failing the file.

        Raises:
            SourceNotFound: If the root does not exist.
        """
        self.validate()
        counts = dict.fromkeys(self.patterns, 0)
        samples: list[FileSample] = []
        warnings: list[str] = []
        files_scanned = 0

        for path in self.files():
            try:
                hits = self._scan_file(path, samples)
            except OSError as e:
                message = f"{path}: cannot read log file: {e}"
                logger.warning(message)
                warnings.append(message)
                continue
            files_scanned += 1
            for pattern in hits:
                counts[pattern] += 1

        # Stable sort keeps configuration order among equal counts.
        term_counts = sorted(
            ((pattern, count) for pattern, count in counts.items() if count),
            key=lambda item: item[1],
            reverse=True,
        )
        logger.info(
            f"Scanned {files_scanned} log file(s) under {self.root}: "
            f"{len(term_counts)} pattern(s) matched"
        )
        return FileScanSummary(
            root=self.root,
            files_scanned=files_scanned,
            term_counts=tuple(term_counts),
            samples=tuple(samples),
            warnings=tuple(warnings),
        )

    def _scan_file(self, path: str, samples: list[FileSample]) -> set[str]:
        """Return the patterns matching any line of ``path``, appending samples."""
        hits: set[str] = set()
        with open(path, encoding="utf-8", errors="replace") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.rstrip()
                for pattern, regex in self._matchers:
                    if not regex.search(line):
                        continue
                    hits.add(pattern)
                    if len(samples) < self.max_samples:
                        samples.append(FileSample(path, pattern, line_number, line))
                if len(hits) == len(self._matchers) and len(samples) >= self.max_samples:
                    break
        return hits
