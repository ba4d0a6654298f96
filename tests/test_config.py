"""Test configuration loading from env and from config documents."""

from kgm.config import Config, config_from_mapping, config_to_flat, load_config
from kgm.core.decay import DEFAULT_DECAY
from kgm.graph.config import load_memgraph_config


def test_defaults(monkeypatch):
    for name in ("KGM_ENABLED", "KGM_MODE", "KGM_PROVIDER", "KGM_MEMGRAPH_URL"):
        monkeypatch.delenv(name, raising=False)
    config = load_config()
    assert config.kgm.enabled is False
    assert config.kgm.mode == "fs+kgm"
    assert config.kgm.effective_mode == "fs-only"
    assert config.kgm.memgraph.url == "bolt://127.0.0.1:7687"
    assert config.kgm.decay == DEFAULT_DECAY


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("KGM_ENABLED", "yes")
    monkeypatch.setenv("KGM_MODE", "KGM-Primary")
    monkeypatch.setenv("KGM_MEMGRAPH_URL", "bolt://graph:7687")
    monkeypatch.setenv("KGM_MEMGRAPH_MAX_POOL_SIZE", "5")
    monkeypatch.setenv("KGM_DECAY_MIN_WEIGHT", "0.3")
    monkeypatch.setenv("KGM_CORS_ORIGINS", "http://a, http://b")

    config = load_config()
    assert config.kgm.enabled is True
    assert config.kgm.mode == "kgm-primary"
    assert config.kgm.reads_from_graph
    assert config.kgm.memgraph.url == "bolt://graph:7687"
    assert config.kgm.memgraph.max_pool_size == 5
    assert config.kgm.decay.min_weight == 0.3
    assert config.cors_origins == ["http://a", "http://b"]


def test_unknown_mode_falls_back(monkeypatch):
    monkeypatch.setenv("KGM_MODE", "sometimes")
    assert load_config().kgm.mode == "fs+kgm"


def test_memgraph_env(monkeypatch):
    monkeypatch.setenv("KGM_MEMGRAPH_USER", "mg")
    monkeypatch.setenv("KGM_MEMGRAPH_TIMEOUT_MS", "2500")
    mg = load_memgraph_config()
    assert mg.user == "mg"
    assert mg.timeout_ms == 2500


def test_config_from_mapping_accepts_camel_case():
    config = config_from_mapping({
        "kgm": {
            "enabled": "true",
            "mode": "fs-only",
            "memgraph": {"url": "bolt://x:1", "maxPoolSize": 3},
            "decay": {"halfLifeMs": 1000},
        },
        "stateDir": "/var/kgm",
    })
    assert config.kgm.enabled is True
    assert config.kgm.mode == "fs-only"
    assert config.kgm.memgraph.max_pool_size == 3
    assert config.kgm.decay.half_life_ms == 1000
    assert config.kgm.decay.min_weight == DEFAULT_DECAY.min_weight
    assert config.state_dir == "/var/kgm"


def test_config_from_mapping_keeps_base():
    base = config_from_mapping({"kgm": {"enabled": True, "memgraph": {"user": "u"}}})
    config = config_from_mapping({"kgm": {"mode": "kgm-primary"}}, base=base)
    assert config.kgm.enabled is True
    assert config.kgm.memgraph.user == "u"
    assert config.kgm.mode == "kgm-primary"


def test_config_from_mapping_ignores_bad_sections():
    config = config_from_mapping({"kgm": "nope", "unknown": 1})
    assert config.kgm == Config().kgm


def test_config_to_flat_masks_password():
    config = config_from_mapping({"kgm": {"memgraph": {"password": "pw"}}})
    flat = config_to_flat(config)
    assert flat["kgm.memgraph.password"] != "pw"
    assert flat["kgm.decay.half_life_ms"] == DEFAULT_DECAY.half_life_ms
    assert "cors_origins" not in flat
