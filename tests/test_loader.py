"""Tests for config loading, validation and plugin construction."""

import json

import pytest

from tailpipe.errors import ConfigurationError
from tailpipe.loader import SAMPLE_CONFIG, build_config, load_config, read_config_file
from tailpipe.plugins.filters import KeywordFilter
from tailpipe.plugins.http import HttpOutput
from tailpipe.schemas.config import PipelineSpec, ServerConfigFile, ServerOptions


def _write(path, document):
    path.write_text(json.dumps(document))
    return path


# ------------------------------------------------------------------
# Schema
# ------------------------------------------------------------------


class TestOptions:
    def test_defaults(self):
        options = ServerOptions()
        assert options.debounce_ms == 1000
        assert options.max_retries == 3
        assert options.log_level == "info"
        assert options.enable_buffering is True
        assert options.tail_from_now is False
        assert options.file_suffix == ".jsonl"
        assert options.debounce_seconds == 1.0

    def test_camel_case_keys(self):
        options = ServerOptions.model_validate(
            {"debounceMs": 250, "enableBuffering": False, "tailFromNow": True}
        )
        assert options.debounce_seconds == 0.25
        assert not options.enable_buffering
        assert options.tail_from_now

    def test_warn_is_warning(self):
        assert ServerOptions(log_level="WARN").log_level == "warning"

    def test_bad_log_level(self):
        with pytest.raises(ValueError):
            ServerOptions(log_level="loud")

    def test_suffix_gets_a_dot(self):
        assert ServerOptions(file_suffix="LOG").file_suffix == ".log"

    def test_negative_debounce_rejected(self):
        with pytest.raises(ValueError):
            ServerOptions(debounce_ms=-1)


class TestPipelineSpec:
    def test_filter_and_filters_concatenate(self):
        spec = PipelineSpec(name="p", filter="A", filters=["B", "C"])
        assert spec.filter_names == ["A", "B", "C"]

    def test_no_filters(self):
        assert PipelineSpec(name="p").filter_names == []


# ------------------------------------------------------------------
# Reading
# ------------------------------------------------------------------


class TestReadConfigFile:
    def test_missing_file_gives_defaults(self, tmp_path):
        document = read_config_file(tmp_path / "nope.json")
        assert document == ServerConfigFile()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Cannot read config"):
            read_config_file(path)

    def test_schema_violation(self, tmp_path):
        path = _write(tmp_path / "config.json", {"pipelines": [{"outputs": ["X"]}]})
        with pytest.raises(ConfigurationError, match="Invalid config"):
            read_config_file(path)

    def test_module_key_accepted_for_type(self, tmp_path):
        path = _write(
            tmp_path / "config.json",
            {"plugins": {"filters": [{"name": "F", "module": "KeywordFilter", "options": {}}]}},
        )
        assert read_config_file(path).plugins.filters[0].type == "KeywordFilter"

    def test_sample_config_is_valid(self, tmp_path):
        path = _write(tmp_path / "config.json", SAMPLE_CONFIG)
        document = read_config_file(path)
        assert len(document.pipelines) == 4
        assert document.global_outputs == ["AllDataOutput"]


# ------------------------------------------------------------------
# Building
# ------------------------------------------------------------------


class TestBuildConfig:
    def test_plugins_built_from_registry(self, tmp_path):
        document = ServerConfigFile.model_validate(
            {
                "watchDirectory": str(tmp_path),
                "plugins": {
                    "filters": [
                        {"name": "Errors", "type": "KeywordFilter", "options": {"keywords": ["e"]}}
                    ],
                    "outputs": [{"name": "Console", "type": "console"}],
                },
                "pipelines": [{"name": "p", "filter": "Errors", "outputs": ["Console"]}],
            }
        )
        config = build_config(document)

        [errors] = config.filters
        [console] = config.outputs
        assert isinstance(errors, KeywordFilter)
        assert errors.name == "Errors"
        assert console.name == "Console"
        assert config.watch_directory == tmp_path

    def test_broken_plugin_is_skipped(self, tmp_path):
        document = ServerConfigFile.model_validate(
            {
                "plugins": {
                    "filters": [
                        {"name": "Ghost", "type": "NoSuchFilter"},
                        {"name": "Bad", "type": "KeywordFilter", "options": {}},
                        {"name": "Good", "type": "KeywordFilter", "options": {"keywords": ["a"]}},
                    ]
                }
            }
        )
        config = build_config(document, watch_directory=tmp_path)
        assert [f.name for f in config.filters] == ["Good"]

    def test_output_kind_rejected_as_filter(self, tmp_path):
        document = ServerConfigFile.model_validate(
            {"plugins": {"filters": [{"name": "X", "type": "ConsoleOutput"}]}}
        )
        assert build_config(document, watch_directory=tmp_path).filters == []

    def test_max_retries_becomes_http_default(self, tmp_path):
        document = ServerConfigFile.model_validate(
            {
                "plugins": {
                    "outputs": [
                        {"name": "A", "type": "HttpOutput", "options": {"url": "http://x.test"}},
                        {
                            "name": "B",
                            "type": "HttpOutput",
                            "options": {"url": "http://x.test", "retries": 1},
                        },
                    ]
                },
                "options": {"maxRetries": 5},
            }
        )
        a, b = build_config(document, watch_directory=tmp_path).outputs
        assert isinstance(a, HttpOutput)
        assert a.options.retries == 5
        assert b.options.retries == 1

    def test_watch_directory_override_wins(self, tmp_path):
        document = ServerConfigFile(watch_directory="/somewhere/else")
        config = build_config(document, watch_directory=tmp_path)
        assert config.watch_directory == tmp_path

    def test_load_config(self, tmp_path):
        path = _write(
            tmp_path / "config.json",
            {
                "watchDirectory": str(tmp_path),
                "globalOutputs": ["Console"],
                "plugins": {"outputs": [{"name": "Console", "type": "ConsoleOutput"}]},
            },
        )
        config = load_config(path)
        assert config.global_outputs == ["Console"]
        assert config.outputs[0].name == "Console"
