from settings import resolve_data_source, DataSourceConfig


def test_defaults_to_database():
    assert resolve_data_source() == DataSourceConfig(use_mock_data=False, source="default")


def test_environment_default():
    assert resolve_data_source(env_value="true") == DataSourceConfig(use_mock_data=True, source="env")
    assert resolve_data_source(env_value="0").use_mock_data is False


def test_explicit_override_beats_environment():
    assert resolve_data_source("false", "true") == DataSourceConfig(use_mock_data=False, source="override")
    assert resolve_data_source("TRUE", "false") == DataSourceConfig(use_mock_data=True, source="override")


def test_blank_values_are_ignored():
    assert resolve_data_source("  ", "") == DataSourceConfig(use_mock_data=False, source="default")
