"""Service configuration from the environment."""

import json

import pytest

from wayside.config import ServiceConfig


@pytest.fixture
def clean_env(monkeypatch):
    for key in (
        "OSRM_URLS",
        "OSRM_ENABLE_PUBLIC_FALLBACK",
        "OSRM_LOCAL_TIMEOUT_MS",
        "RECO_ROLLOUT_RATIO",
        "RECO_CONFIG_PATH",
        "RECO_RECALL_BEST_EFFORT",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestServiceConfig:
    def test_from_env(self, clean_env, tmp_path):
        clean_env.setenv("OSRM_URLS", "http://localhost:5000, ,http://10.0.0.2:5000")
        clean_env.setenv("OSRM_ENABLE_PUBLIC_FALLBACK", "0")
        clean_env.setenv("OSRM_LOCAL_TIMEOUT_MS", "250")
        clean_env.setenv("RECO_ROLLOUT_RATIO", "30")
        clean_env.setenv("DATA_DIR", str(tmp_path))
        clean_env.setenv("LOG_LEVEL", "debug")

        config = ServiceConfig.from_env()
        assert config.osrm_urls == ["http://localhost:5000", "http://10.0.0.2:5000"]
        assert not config.osrm_enable_public_fallback
        assert config.osrm_local_timeout_s == pytest.approx(0.25)
        assert config.rollout_ratio == pytest.approx(0.3)
        assert config.data_dir == tmp_path
        assert config.log_level == "DEBUG"

    def test_validate(self, tmp_path):
        ok, errors = ServiceConfig(data_dir=tmp_path).validate()
        assert ok and errors == []

        ok, errors = ServiceConfig(
            data_dir=tmp_path,
            poi_json_path=tmp_path / "missing.json",
            log_level="LOUD",
        ).validate()
        assert not ok
        assert len(errors) == 2

    def test_load_algorithm_config(self, tmp_path):
        path = tmp_path / "reco.json"
        with open(path, "w") as f:
            json.dump({"bandit": {"bandit_alpha": 0.5}, "diversity": {"category_cap": 2}}, f)

        config = ServiceConfig(
            data_dir=tmp_path,
            algorithm_config_path=path,
            recall_best_effort=True,
        ).load_algorithm_config()
        assert config.bandit_alpha == 0.5
        assert config.category_cap == 2
        assert config.recall_best_effort

    def test_defaults_without_file(self, tmp_path):
        config = ServiceConfig(data_dir=tmp_path).load_algorithm_config()
        assert config.bandit_alpha == 0.35
        assert not config.recall_best_effort
