import pytest
from pydantic import ValidationError

from govqa.core.config import PipelineConfig, load_config
from govqa.core.errors import QuotaExhaustedError, is_quota_error
from govqa.core.jsonx import extract_json
from govqa.graph.answer_policy import PROSE_POLICY, SECTIONED_POLICY, format_instructions, select_policy, tier_instructions


class _ProviderError(Exception):
    def __init__(self, message, code=None, body=None):
        super().__init__(message)
        self.code = code
        self.body = body


def test_config_is_frozen():
    config = PipelineConfig()
    with pytest.raises(ValidationError):
        config.gate_threshold = 5.0


def test_env_overrides_then_keyword_overrides(monkeypatch):
    monkeypatch.setenv("GOVQA_GATE_THRESHOLD", "3.5")
    monkeypatch.setenv("GOVQA_MERGED_CAP", "9")
    monkeypatch.setenv("GOVQA_ANSWER_PROFILE", "prose")
    config = load_config(merged_cap=11)

    assert config.gate_threshold == 3.5
    assert config.merged_cap == 11
    assert config.answer_profile == "prose"
    assert select_policy(config) == PROSE_POLICY


def test_default_profile_is_sectioned():
    assert select_policy(PipelineConfig()) == SECTIONED_POLICY


def test_synthesis_settings_flow_into_policy(monkeypatch):
    monkeypatch.setenv("GOVQA_SYNTH_TEMPERATURE", "0.7")
    monkeypatch.setenv("GOVQA_SYNTH_MAX_TOKENS", "800")
    policy = select_policy(load_config())

    assert policy.temperature == 0.7
    assert policy.max_output_tokens == 800
    assert policy.heading_names == SECTIONED_POLICY.heading_names
    assert SECTIONED_POLICY.temperature == 0.3


def test_profile_keeps_own_output_ceiling_by_default():
    assert select_policy(PipelineConfig(answer_profile="prose")).max_output_tokens == PROSE_POLICY.max_output_tokens


@pytest.mark.parametrize(
    "exc",
    [
        QuotaExhaustedError(),
        RuntimeError("429 RESOURCE_EXHAUSTED"),
        _ProviderError("too many requests", code=429),
        _ProviderError("rate limited", body={"error": {"type": "insufficient_quota", "message": "no credit"}}),
    ],
)
def test_quota_shapes_are_recognized(exc):
    assert is_quota_error(exc)


def test_other_errors_are_not_quota():
    assert not is_quota_error(RuntimeError("connection reset"))
    assert not is_quota_error(_ProviderError("bad request", code=400))


def test_extract_json_finds_embedded_object():
    assert extract_json('Here you go: {"a": 1} thanks') == {"a": 1}
    with pytest.raises(ValueError):
        extract_json("[1, 2]")
    with pytest.raises(ValueError):
        extract_json("")


def test_instructions_render_policy_limits():
    text = format_instructions(SECTIONED_POLICY)
    assert "1. **Bottom line** - 1-3 sentences of prose, no bullets." in text
    assert "at most 500 words" in text.lower()
    assert "1900 characters" in format_instructions(PROSE_POLICY)
    assert tier_instructions("C").startswith("TIER C")
