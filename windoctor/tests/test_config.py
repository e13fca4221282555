"""Tests for configuration loading and validation."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from windoctor.config import Settings, load_settings
from windoctor.core.exceptions import InvalidConfiguration


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run from an empty directory with no WINDOCTOR_ variables set."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.upper().startswith("WINDOCTOR_"):
            monkeypatch.delenv(key)
    return tmp_path


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        settings = load_settings()
        assert settings.channels == ["System", "Application"]
        assert settings.max_depth == 2
        assert settings.log_level == "WARNING"
        assert settings.output_format == "text"
        assert settings.correlate is False
        assert settings.evtx_glob == "*.evtx"
        assert settings.ignored_modules == ["api-ms-win-*", "ext-ms-win-*"]
        assert settings.scan_path is None
        assert settings.file_patterns is None
        assert settings.max_file_samples == 20

    def test_default_crash_rule(self) -> None:
        (rule,) = load_settings().crash_rules
        assert rule.provider == "Application Error"
        assert rule.event_ids == [1000]
        assert rule.path_fields == ["AppPath", "ModulePath", "param10", "param11"]


class TestSources:
    """Tests for source precedence."""

    def test_environment_variables_use_prefix(self) -> None:
        with patch.dict(
            os.environ,
            {
                "WINDOCTOR_MAX_DEPTH": "5",
                "WINDOCTOR_CHANNELS": '["Security"]',
                "WINDOCTOR_LOG_LEVEL": "debug",
                "MAX_DEPTH": "9",
            },
        ):
            settings = load_settings()
        assert settings.max_depth == 5
        assert settings.channels == ["Security"]
        assert settings.log_level == "DEBUG"

    def test_default_toml_file_is_read(self, isolated: Path) -> None:
        (isolated / "windoctor.toml").write_text("max_depth = 4\n", encoding="utf-8")
        assert load_settings().max_depth == 4

    def test_explicit_config_file(self, isolated: Path) -> None:
        config = isolated / "conf" / "site.toml"
        config.parent.mkdir()
        config.write_text(
            "\n".join(
                [
                    'channels = ["Setup"]',
                    "correlate = true",
                    "",
                    "[[crash_rules]]",
                    'provider = "Contoso"',
                    "event_ids = [7]",
                    'path_fields = ["Binary"]',
                ]
            ),
            encoding="utf-8",
        )

        settings = load_settings(str(config))

        assert settings.channels == ["Setup"]
        assert settings.correlate is True
        assert [r.provider for r in settings.crash_rules] == ["Contoso"]
        assert settings.crash_rules[0].path_fields == ["Binary"]

    def test_environment_beats_file_and_overrides_beat_both(self, isolated: Path) -> None:
        (isolated / "windoctor.toml").write_text("max_depth = 4\n", encoding="utf-8")
        with patch.dict(os.environ, {"WINDOCTOR_MAX_DEPTH": "6"}):
            assert load_settings().max_depth == 6
            assert load_settings(max_depth=1).max_depth == 1

    def test_none_overrides_fall_through(self, isolated: Path) -> None:
        (isolated / "windoctor.toml").write_text("max_depth = 4\n", encoding="utf-8")
        assert load_settings(max_depth=None).max_depth == 4

    def test_missing_config_file_is_an_error(self, isolated: Path) -> None:
        with pytest.raises(InvalidConfiguration, match="not found"):
            load_settings(str(isolated / "absent.toml"))

    def test_malformed_config_file_is_an_error(self, isolated: Path) -> None:
        config = isolated / "broken.toml"
        config.write_text("max_depth = \n", encoding="utf-8")
        with pytest.raises(InvalidConfiguration):
            load_settings(str(config))


class TestValidation:
    """Tests for field validation."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_depth": -1},
            {"evtx_workers": 0},
            {"correlator_workers": 0},
            {"max_records": 0},
            {"lookback_minutes": -5},
            {"live_duration_seconds": -1.0},
            {"severities": ["fatal"]},
            {"include_event_ids": [-1]},
            {"exclude_event_ids": [2**32]},
            {"output_format": "xml"},
            {"log_level": "chatty"},
            {"max_file_samples": -1},
        ],
    )
    def test_invalid_values_are_rejected(self, overrides: dict) -> None:
        with pytest.raises(InvalidConfiguration):
            load_settings(**overrides)

    def test_inverted_window_is_rejected(self) -> None:
        with pytest.raises(InvalidConfiguration, match="since cannot be after until"):
            load_settings(since="2024-03-02T00:00:00Z", until="2024-03-01T00:00:00Z")

    def test_naive_and_aware_bounds_compare_as_utc(self) -> None:
        settings = load_settings(since="2024-03-01T12:00:00", until="2024-03-01T13:00:00+00:00")
        assert settings.since is not None

    def test_crash_rule_needs_path_fields(self) -> None:
        with pytest.raises(InvalidConfiguration):
            load_settings(crash_rules=[{"provider": "Contoso", "path_fields": []}])

    def test_severity_names_are_case_insensitive(self) -> None:
        assert load_settings(severities=["Error", "CRITICAL"]).severities == ["Error", "CRITICAL"]

    def test_settings_class_is_usable_directly(self) -> None:
        assert Settings(max_depth=3).max_depth == 3
