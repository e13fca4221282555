"""Unit tests for the plain-text log scan."""

import os
from pathlib import Path

import pytest

from windoctor.core.exceptions import InvalidPattern, SourceNotFound
from windoctor.core.file_scan import TextLogScanner


@pytest.fixture
def logs(tmp_path: Path) -> Path:
    root = tmp_path / "logs"
    (root / "setup").mkdir(parents=True)
    (root / "cbs.log").write_text(
        "2024-03-01 Info  starting\n"
        "2024-03-01 Error failed to load foo.dll\n"
        "2024-03-01 Error access denied   \n",
        encoding="utf-8",
    )
    (root / "setup" / "setupact.LOG").write_text(
        "Warning: driver rollback\nError: disk full\n", encoding="utf-8"
    )
    (root / "notes.txt").write_text("Error in notes\n", encoding="utf-8")
    return root


class TestTextLogScanner:
    """Tests for pattern counting and sampling."""

    def test_counts_files_per_pattern(self, logs: Path) -> None:
        scanner = TextLogScanner(str(logs), ["Error", "rollback", "never"], file_glob="*.log")

        result = scanner.scan()

        assert result.files_scanned == 2
        assert result.term_counts == (("Error", 2), ("rollback", 1))

    def test_samples_keep_line_numbers_and_trim_trailing_space(self, logs: Path) -> None:
        scanner = TextLogScanner(str(logs / "cbs.log"), ["Error"])

        result = scanner.scan()

        assert [(s.line_number, s.line) for s in result.samples] == [
            (2, "2024-03-01 Error failed to load foo.dll"),
            (3, "2024-03-01 Error access denied"),
        ]
        assert all(s.path == str(logs / "cbs.log") for s in result.samples)

    def test_samples_are_capped_but_counting_continues(self, logs: Path) -> None:
        scanner = TextLogScanner(str(logs), ["Error"], max_samples=1)

        result = scanner.scan()

        assert len(result.samples) == 1
        assert result.term_counts == (("Error", 3),)

    def test_no_glob_scans_every_file_recursively(self, logs: Path) -> None:
        files = [os.path.basename(p) for p in TextLogScanner(str(logs), []).files()]
        assert files == ["cbs.log", "notes.txt", "setupact.LOG"]

    def test_undecodable_bytes_do_not_fail_the_file(self, tmp_path: Path) -> None:
        path = tmp_path / "binary.log"
        path.write_bytes(b"\xff\xfe Error here\n")

        result = TextLogScanner(str(path), ["Error"]).scan()

        assert result.term_counts == (("Error", 1),)

    def test_invalid_pattern_is_rejected_at_construction(self, logs: Path) -> None:
        with pytest.raises(InvalidPattern):
            TextLogScanner(str(logs), ["(unclosed"])

    def test_missing_root(self, tmp_path: Path) -> None:
        scanner = TextLogScanner(str(tmp_path / "absent"), ["Error"])
        with pytest.raises(SourceNotFound):
            scanner.validate()

    def test_negative_sample_limit_is_rejected(self, logs: Path) -> None:
        with pytest.raises(ValueError):
            TextLogScanner(str(logs), ["Error"], max_samples=-1)
