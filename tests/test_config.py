"""
Tests for config.py - AppConfig loading, validation and saving
"""

import json

import pytest
import yaml

from smart_suggestion.config import DEFAULT_CONFIG_YAML, AppConfig
from smart_suggestion.errors import ConfigValidationError
from smart_suggestion.filter import FilterLevel


class TestLoading:
    """Tests for file, dict and environment loading."""

    def test_defaults(self):
        config = AppConfig()
        assert config.privacy_level == "basic"
        assert config.lock_dir == "/tmp"
        assert config.log_dir == "/tmp/smart-suggestion/sessions"
        assert config.debug_log_file == "/tmp/smart-suggestion.log"
        assert config.max_log_lines == 100
        assert config.max_history_lines == 50

    def test_missing_file_gives_defaults(self, tmp_path):
        assert AppConfig.from_file(str(tmp_path / "absent.yaml")) == AppConfig()

    def test_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "privacy:\n"
            "  level: strict\n"
            "  custom_patterns: ['corp-\\d+']\n"
            "rotation:\n"
            "  max_segments: 9\n"
            "proxy:\n"
            "  lock_scope: work\n"
        )

        config = AppConfig.from_file(str(path))

        assert config.privacy_level == "strict"
        assert config.custom_patterns == ["corp-\\d+"]
        assert config.max_segments == 9
        assert config.lock_scope == "work"
        assert config.max_segment_size == AppConfig().max_segment_size

    def test_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"debug": {"enabled": True, "log_file": "/tmp/x.log"}}))

        config = AppConfig.from_file(str(path))

        assert config.debug is True
        assert config.debug_log_file == "/tmp/x.log"

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("level = 1")

        with pytest.raises(ValueError, match="Unsupported config format"):
            AppConfig.from_file(str(path))

    def test_default_template_parses(self, tmp_path):
        config = AppConfig.from_dict(yaml.safe_load(DEFAULT_CONFIG_YAML))
        assert config == AppConfig()

    def test_environment_overlay(self):
        config = AppConfig.from_env({
            "SMART_SUGGESTION_DEBUG": "true",
            "SMART_SUGGESTION_LOG_FILE": "/var/tmp/ss.log",
            "SMART_SUGGESTION_PRIVACY_LEVEL": "moderate",
            "SMART_SUGGESTION_PRIVACY_ENABLED": "0",
            "SMART_SUGGESTION_LOCK_SCOPE": "tmux",
            "SMART_SUGGESTION_LOG_DIR": "/var/tmp/sessions",
            "SMART_SUGGESTION_SHELL": "/bin/zsh",
        })

        assert config.debug is True
        assert config.debug_log_file == "/var/tmp/ss.log"
        assert config.privacy_level == "moderate"
        assert config.privacy_enabled is False
        assert config.lock_scope == "tmux"
        assert config.log_dir == "/var/tmp/sessions"
        assert config.shell_command() == ["/bin/zsh"]

    def test_load_prefers_env_over_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("privacy:\n  level: strict\n")

        config = AppConfig.load(environ={
            "SMART_SUGGESTION_CONFIG": str(path),
            "SMART_SUGGESTION_PRIVACY_LEVEL": "none",
        })

        assert config.privacy_level == "none"
        assert config.filter_config().level is FilterLevel.NONE

    def test_load_validates(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("privacy:\n  level: loud\n")

        with pytest.raises(ConfigValidationError):
            AppConfig.load(str(path), environ={})


class TestValidation:
    """Tests for AppConfig.validate."""

    def test_valid_defaults(self):
        AppConfig().validate()

    def test_single_problem(self):
        config = AppConfig(privacy_level="loud")

        with pytest.raises(ConfigValidationError) as excinfo:
            config.validate()

        assert excinfo.value.problems[0][0] == "privacy.level"
        assert str(excinfo.value).startswith("validation error in privacy.level")

    def test_collects_every_problem(self):
        config = AppConfig(max_segment_size=0, max_segments=-1, lock_scope="", max_log_lines=-3)

        with pytest.raises(ConfigValidationError) as excinfo:
            config.validate()

        fields = [field for field, _ in excinfo.value.problems]
        assert fields == [
            "rotation.max_segment_size",
            "rotation.max_segments",
            "proxy.lock_scope",
            "context.max_log_lines",
        ]
        assert str(excinfo.value).startswith("multiple validation errors: ")

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            AppConfig(custom_patterns="not-a-list").validate()

    def test_integer_level_accepted(self):
        config = AppConfig(privacy_level=3)
        config.validate()
        assert config.filter_config().level is FilterLevel.STRICT

    def test_scalar_custom_patterns_rejected(self):
        config = AppConfig.from_dict({"privacy": {"custom_patterns": "abc"}})

        assert config.custom_patterns == "abc"
        with pytest.raises(ConfigValidationError) as excinfo:
            config.validate()
        assert excinfo.value.problems[0][0] == "privacy.custom_patterns"

    def test_empty_custom_patterns_key(self):
        config = AppConfig.from_dict({"privacy": {"custom_patterns": None}})

        config.validate()
        assert config.custom_patterns == []

    @pytest.mark.parametrize("document", ["- one\n- two\n", "just text\n"])
    def test_non_mapping_document_rejected(self, tmp_path, document):
        path = tmp_path / "config.yaml"
        path.write_text(document)

        with pytest.raises(ConfigValidationError) as excinfo:
            AppConfig.from_file(str(path))
        assert excinfo.value.problems[0][0] == "config"

    def test_non_mapping_section_rejected(self):
        with pytest.raises(ConfigValidationError) as excinfo:
            AppConfig.from_dict({"rotation": [1, 2]})
        assert excinfo.value.problems == [("rotation", "must be a mapping")]


class TestDerived:
    """Tests for the immutable structs built from AppConfig."""

    def test_filter_config(self):
        config = AppConfig(privacy_level="moderate", custom_patterns=["x+"], replacement_text="***")
        filter_config = config.filter_config()

        assert filter_config.level is FilterLevel.MODERATE
        assert filter_config.custom_patterns == ("x+",)
        assert filter_config.replacement_text == "***"

    def test_rotation_config(self):
        rotation = AppConfig(max_segment_size=2048, max_segments=0, compress=False).rotation_config()

        assert rotation.max_segment_size == 2048
        assert rotation.max_segments == 0
        assert rotation.compress is False

    def test_lock_path(self, tmp_path, monkeypatch):
        monkeypatch.setattr("socket.gethostname", lambda: "host")
        config = AppConfig(lock_dir=str(tmp_path), lock_scope="work")

        assert config.lock_path() == tmp_path / "smart-suggestion-proxy-host-work.lock"

    def test_shell_falls_back(self, monkeypatch):
        monkeypatch.delenv("SHELL", raising=False)
        assert AppConfig().shell_command() == ["/bin/sh"]
        monkeypatch.setenv("SHELL", "/bin/bash")
        assert AppConfig().shell_command() == ["/bin/bash"]


class TestSaving:
    """Tests for AppConfig.save."""

    @pytest.mark.parametrize("name", ["config.yaml", "config.json"])
    def test_round_trip(self, tmp_path, name):
        original = AppConfig(privacy_level="strict", custom_patterns=["a\\d+"], max_segments=2, debug=True)
        path = tmp_path / "nested" / name

        original.save(str(path))

        assert AppConfig.from_file(str(path)) == original
        assert (path.stat().st_mode & 0o777) == 0o600
        assert (path.parent.stat().st_mode & 0o777) == 0o700
