"""
rewrite-engine — unit tests for config schema validation

File: tests/unit/config/test_schema.py

Purpose
- Validate strict config schema behavior and structured errors.

What this test file should cover
- Built-in defaults validate successfully.
- Rejects unknown keys and invalid types with actionable paths.
- Clamps out-of-range generation settings instead of rejecting them.
- Backend/delivery combinations that cannot work are reported.
"""

from __future__ import annotations

import pytest

from rewrite_engine.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)
from rewrite_engine.constants import DEFAULT_ACTIVE_PRESET, DEFAULT_OLLAMA_MODEL


def _paths(config: object) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_default_config_validates_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["meta"]["schema_version"] == ConfigSchemaVersion
    assert result.config["tool"]["backend"] == "ollama"


def test_default_config_is_a_fresh_copy() -> None:
    first = default_config()
    first["tool"]["model"] = "changed"

    assert default_config()["tool"]["model"] == DEFAULT_OLLAMA_MODEL


def test_unknown_keys_are_rejected_with_paths() -> None:
    config = merge_config(default_config(), {"tool": {"flavour": "x"}, "extra": {}})

    assert _paths(config) == ["extra", "tool.flavour"]


def test_missing_section_is_reported() -> None:
    config = default_config()
    del config["generation"]  # type: ignore[misc]

    assert _paths(config) == ["generation"]


def test_invalid_enum_lists_expected_values() -> None:
    config = merge_config(default_config(), {"tool": {"backend": "gpt"}})

    result = validate_config(config)

    assert result.config is None
    assert result.issues[0].path == "tool.backend"
    assert "expected one of: llama_cpp, ollama" in result.issues[0].message


@pytest.mark.parametrize(
    ("overlay", "path"),
    [
        ({"generation": {"max_tokens": "many"}}, "generation.max_tokens"),
        ({"generation": {"max_tokens": True}}, "generation.max_tokens"),
        ({"generation": {"temperature": float("inf")}}, "generation.temperature"),
        ({"observability": {"log_to_stdout": "yes"}}, "observability.log_to_stdout"),
        ({"observability": {"log_dir": "  "}}, "observability.log_dir"),
        ({"tool": {"model_path": "a\x00b"}}, "tool.model_path"),
    ],
)
def test_invalid_values_report_field_path(overlay: dict[str, object], path: str) -> None:
    assert _paths(merge_config(default_config(), overlay)) == [path]


def test_generation_values_are_clamped() -> None:
    config = merge_config(
        default_config(), {"generation": {"temperature": 9, "max_tokens": 1_000_000}}
    )

    normalized = assert_valid_config(config)

    assert normalized["generation"] == {"temperature": 1.5, "max_tokens": 4096}


def test_blank_model_and_preset_fall_back_to_defaults() -> None:
    config = merge_config(
        default_config(), {"tool": {"model": "  "}, "prompts": {"active_preset": ""}}
    )

    normalized = assert_valid_config(config)

    assert normalized["tool"]["model"] == DEFAULT_OLLAMA_MODEL
    assert normalized["prompts"]["active_preset"] == DEFAULT_ACTIVE_PRESET


def test_log_level_is_case_insensitive() -> None:
    config = merge_config(default_config(), {"observability": {"log_level": " debug "}})

    assert assert_valid_config(config)["observability"]["log_level"] == "DEBUG"


@pytest.mark.parametrize(
    ("backend", "delivery"),
    [("ollama", "file"), ("llama_cpp", "stdin")],
)
def test_unsupported_delivery_for_backend(backend: str, delivery: str) -> None:
    config = merge_config(default_config(), {"tool": {"backend": backend, "delivery": delivery}})

    assert _paths(config) == ["tool.delivery"]


def test_schema_version_mismatch_carries_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)

    assert excinfo.value.issues[0].path == "meta.schema_version"
    assert "upgrade the rewrite-engine runtime" in str(excinfo.value)


def test_migration_guidance_messages() -> None:
    assert "older" in migration_guidance(ConfigSchemaVersion - 1)
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"


def test_root_must_be_object() -> None:
    result = validate_config(["not", "a", "mapping"])

    assert result.config is None
    assert result.issues[0].path == "<root>"


def test_merge_config_is_deep_and_non_destructive() -> None:
    base = {"tool": {"backend": "ollama", "model": "a"}}
    overlay = {"tool": {"model": "b"}}

    merged = merge_config(base, overlay)

    assert merged == {"tool": {"backend": "ollama", "model": "b"}}
    assert base["tool"]["model"] == "a"
