from __future__ import annotations

import pytest

from agentrelay.server.core.config import EngineSettings, Settings, WebhookSettings


def test_engine_settings_to_limits() -> None:
    limits = EngineSettings(max_iterations=8, context_limit=3, llm_timeout_seconds=12.5).to_limits()
    assert limits.max_iterations == 8
    assert limits.context_limit == 3
    assert limits.llm_timeout_seconds == 12.5


def test_webhook_settings_to_retry_policy_and_headers() -> None:
    webhook = WebhookSettings(max_attempts=3, backoff_base_seconds=2, signature_header="X-Sig")
    policy = webhook.to_retry_policy()
    assert policy.max_attempts == 3
    assert policy.schedule() == [2.0, 4.0]
    headers = webhook.to_headers()
    assert headers.signature == "X-Sig"
    assert headers.event == "X-Webhook-Event"


def test_nested_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENGINE__MAX_ITERATIONS", "9")
    monkeypatch.setenv("WEBHOOK__MAX_ATTEMPTS", "2")
    monkeypatch.setenv("LLM__MODEL", "test")
    monkeypatch.setenv("AUTH__TOKENS", '{"t1": {"id": "u1", "role": "admin"}}')
    s = Settings(_env_file=None)
    assert s.engine.max_iterations == 9
    assert s.webhook.max_attempts == 2
    assert s.llm.model == "test"
    assert s.auth.tokens["t1"].id == "u1"
    assert s.auth.tokens["t1"].role == "admin"


def test_invalid_limits_are_rejected() -> None:
    with pytest.raises(ValueError):
        EngineSettings(max_iterations=0)
    with pytest.raises(ValueError):
        WebhookSettings(max_attempts=0)
