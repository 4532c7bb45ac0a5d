import pytest

from archgraph.llm_client import LLMConfigError, LLMSettings, ProviderConfig, require_credential


def test_require_credential_returns_active_provider(settings):
    cfg = require_credential(settings)
    assert (cfg.provider, cfg.model) == ("openai", "gpt-test")


@pytest.mark.parametrize(
    "bad_settings, message",
    [
        (LLMSettings(active_provider="anthropic"), "No credential configured for anthropic"),
        (
            LLMSettings(active_provider="openai", providers={"openai": ProviderConfig("openai", "gpt", "https://x", "")}),
            "No credential configured for openai",
        ),
        (LLMSettings(active_provider="mystery"), "Unknown provider: mystery"),
    ],
)
def test_require_credential_raises_config_error(bad_settings, message):
    with pytest.raises(LLMConfigError, match=message):
        require_credential(bad_settings)
