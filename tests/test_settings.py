import dataclasses

import pytest

from config.settings import PipelineConfig, Settings


@pytest.fixture
def env_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("EXPORT_DIR", str(tmp_path / "exports"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("MIN_SAMPLE_THRESHOLD", "25")
    monkeypatch.setenv("METRO_FMR", "1210")
    monkeypatch.setenv("SENTINEL_TRACT_IDS", '["99999999999", "00000000000"]')
    return Settings(_env_file=None)


def test_settings_read_from_environment(env_settings, tmp_path):
    assert env_settings.MIN_SAMPLE_THRESHOLD == 25
    assert env_settings.METRO_FMR == pytest.approx(1210.0)
    assert env_settings.SENTINEL_TRACT_IDS == ["99999999999", "00000000000"]
    assert (tmp_path / "exports").is_dir()
    assert (tmp_path / "logs").is_dir()


def test_pipeline_config_from_settings(env_settings):
    config = PipelineConfig.from_settings(env_settings)

    assert config.min_sample_threshold == 25
    assert config.metro_fmr == pytest.approx(1210.0)
    assert config.recap_poc_threshold == pytest.approx(50.0)
    assert config.export_dir == env_settings.EXPORT_DIR


def test_pipeline_config_overrides_skip_none(env_settings):
    config = PipelineConfig.from_settings(env_settings, min_sample_threshold=None, n_quantile_bins=7)

    assert config.min_sample_threshold == 25
    assert config.n_quantile_bins == 7


def test_pipeline_config_is_frozen():
    config = PipelineConfig()

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.min_sample_threshold = 1
