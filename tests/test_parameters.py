"""Unit tests for configuration loading."""

import pytest

from health_record_sync.utils.exceptions import ConfigurationError
from health_record_sync.utils.parameters import ParameterLoader


def test_load_config_with_defaults(tmp_path) -> None:
    """Test that only storage is required and other sections default."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "storage:\n"
        "  records_file: data/records.json\n"
        "sync:\n"
        "  recently_synced_grace_seconds: 8\n"
    )

    loader = ParameterLoader(str(config_file))

    storage = loader.get_storage_config()
    if storage.records_file != "data/records.json" or storage.health_store_file is not None:
        raise AssertionError(f"Unexpected storage config: {storage}")
    sync = loader.get_sync_config()
    if sync.recently_synced_grace_seconds != 8:
        raise AssertionError(f"Expected grace 8s, got {sync.recently_synced_grace_seconds}")
    if sync.timestamp_tolerance_seconds != 2.0:
        raise AssertionError(f"Expected default tolerance 2s, got {sync.timestamp_tolerance_seconds}")
    if loader.get_processing_config().timezone != "UTC":
        raise AssertionError("Expected default timezone UTC")
    if loader.get_raw_config()["export"]["records_csv"] != "health_records.csv":
        raise AssertionError("Expected default export file name")


def test_missing_config_file(tmp_path) -> None:
    """Test that a missing file raises ConfigurationError."""
    with pytest.raises(ConfigurationError):
        ParameterLoader(str(tmp_path / "missing.yaml"))


def test_invalid_values_rejected(tmp_path) -> None:
    """Test that invalid sync policy values raise ConfigurationError."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "storage:\n"
        "  records_file: records.json\n"
        "sync:\n"
        "  timestamp_tolerance_seconds: 0\n"
    )

    with pytest.raises(ConfigurationError):
        ParameterLoader(str(config_file))


def test_malformed_yaml(tmp_path) -> None:
    """Test that unparsable YAML raises ConfigurationError."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("storage: [unclosed\n")

    with pytest.raises(ConfigurationError):
        ParameterLoader(str(config_file))


def test_unknown_timezone_rejected(tmp_path) -> None:
    """Test that an unknown processing timezone raises ConfigurationError."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "storage:\n"
        "  records_file: records.json\n"
        "processing:\n"
        "  timezone: Mars/Olympus_Mons\n"
    )

    with pytest.raises(ConfigurationError):
        ParameterLoader(str(config_file))
