from __future__ import annotations

import pytest
from pydantic import ValidationError

from realtime_bridge.app.config import Settings


def test_model_for_tier_selects_premium_model() -> None:
    config = Settings(REALTIME_MODEL="mini", REALTIME_MODEL_PREMIUM="full")

    assert config.model_for_tier("premium") == "full"
    assert config.model_for_tier("standard") == "mini"
    assert config.model_for_tier(None) == "mini"
    assert config.realtime_url("full") == "wss://api.openai.com/v1/realtime?model=full"


def test_remote_index_requires_key_and_host() -> None:
    assert Settings(PINECONE_API_KEY="k", PINECONE_INDEX_HOST="").remote_index_enabled is False
    config = Settings(PINECONE_API_KEY="k", PINECONE_INDEX_HOST="https://index.example/")
    assert config.remote_index_enabled is True
    assert config.PINECONE_INDEX_HOST == "https://index.example"


@pytest.mark.parametrize(
    "overrides",
    [
        {"INPUT_VAD_SAMPLE_RATE": 44100},
        {"INPUT_VAD_FRAME_MS": 25},
        {"INPUT_VAD_AGGRESSIVENESS": 4},
        {"INPUT_VAD_MIN_SPEECH_FRACTION": 1.5},
    ],
)
def test_invalid_vad_settings_are_rejected(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)
