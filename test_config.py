"""Loop configuration from the environment."""

import pytest

import config
from config import LoopConfig


def test_loop_config_defaults():
    cfg = LoopConfig()
    assert (cfg.step_ceiling, cfg.retry_ceiling, cfg.per_tool_timeout, cfg.stream) == (10, 2, 30.0, False)
    cfg.validate()


def test_loop_config_from_env(monkeypatch):
    monkeypatch.setenv("AGENT_MAX_STEPS", "4")
    monkeypatch.setenv("AGENT_MAX_RETRIES", "0")
    monkeypatch.setenv("TOOL_TIMEOUT", "2.5")
    monkeypatch.setenv("STREAM_RESPONSES", "TRUE")
    cfg = LoopConfig.from_env()
    assert cfg == LoopConfig(step_ceiling=4, retry_ceiling=0, per_tool_timeout=2.5, stream=True)


@pytest.mark.parametrize("kwargs", [
    {"step_ceiling": 0},
    {"retry_ceiling": -1},
    {"per_tool_timeout": 0},
])
def test_loop_config_validate(kwargs):
    with pytest.raises(ValueError):
        LoopConfig(**kwargs).validate()


def test_provider_name_is_normalised(monkeypatch):
    monkeypatch.setattr(config.model_config, "provider", " Bedrock ")
    assert config.get_provider_name() == "bedrock"
    assert config.get_model_name() == config.model_config.bedrock_model_id
    monkeypatch.setattr(config.model_config, "provider", "")
    assert config.get_provider_name() == "ollama"
    assert config.get_model_name() == config.ollama_config.model


def test_loop_config_with_overrides_keeps_unset_fields():
    base = LoopConfig(step_ceiling=7, retry_ceiling=4, per_tool_timeout=12.0, stream=False)
    cfg = base.with_overrides(step_ceiling=3, stream=True)
    assert cfg == LoopConfig(step_ceiling=3, retry_ceiling=4, per_tool_timeout=12.0, stream=True)
    assert base.step_ceiling == 7
    assert base.with_overrides() == base
