"""Runtime configuration for the realtime bridge service."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_VAD_SAMPLE_RATES = (8000, 16000, 32000, 48000)
_VAD_FRAME_MS = (10, 20, 30)


class Settings(BaseSettings):
    """Environment-backed settings for realtime bridge behavior.

    Values are loaded from environment variables, with `.env` used for local
    development defaults.

    Attributes:
        BRIDGE_PORT: Local port where the bridge listens.
        LOG_LEVEL: Application log verbosity.
        OBSERVABILITY_LOG_LEVEL: Log level for metrics and persistence internals.
        WEBSOCKETS_LOG_LEVEL: Log level for `websockets` library internals.
        OPENAI_LOG: Log level for OpenAI SDK and httpx logs.
        OPENAI_API_KEY: API key for realtime, embedding and transcription calls.
        OPENAI_REALTIME_URL: Upstream realtime websocket endpoint.
        REALTIME_MODEL: Default realtime model identifier.
        REALTIME_MODEL_PREMIUM: Model used when a client asks for `tier=premium`.
        REALTIME_VOICE: Voice used for synthesized model audio.
        TURN_DETECTION_TYPE: Upstream turn detection mode.
        EMBEDDING_MODEL: Embedding model used for knowledge retrieval.
        TRANSCRIPTION_MODEL: Model used by the `/transcribe` endpoint.
        TRANSCRIPTION_SAMPLE_RATE: Sample rate assumed for transcription audio.
        PINECONE_API_KEY: Remote vector index API key.
        PINECONE_INDEX_HOST: Remote vector index host URL.
        PINECONE_NAMESPACE: Remote vector index namespace.
        PINECONE_TOP_K: Number of matches requested from the remote index.
        KNOWLEDGE_ITEMS_PATH: JSON file with knowledge item texts.
        KNOWLEDGE_VECTORS_PATH: JSON file with precomputed knowledge vectors.
        VECTOR_CONTEXT_MAX_SNIPPETS: Max local matches used for context.
        VECTOR_CONTEXT_MAX_CHARS: Character budget for an injected context block.
        VECTOR_CONTEXT_MIN_SCORE: Minimum cosine similarity for local matches.
        INPUT_VAD_ENABLED: Gates client audio through the speech classifier.
        INPUT_VAD_SAMPLE_RATE: Sample rate handed to the speech classifier.
        INPUT_VAD_FRAME_MS: Classifier frame duration.
        INPUT_VAD_AGGRESSIVENESS: Classifier aggressiveness (0 lenient, 3 strict).
        INPUT_VAD_MIN_FRAMES: Minimum speech frames for a chunk to pass.
        INPUT_VAD_MIN_SPEECH_FRACTION: Minimum speech-frame ratio for a chunk.
        TOOL_API_BASE_URL: Base URL for business tool HTTP routes.
        TOOL_API_TOKEN: Bearer token sent to business tool routes.
        TOOLS_CONFIG_PATH: JSON tool catalog used without a database.
        SANITIZE_CONFIG_PATH: JSON sanitization rules used without a database.
        INSTRUCTIONS_CONFIG_PATH: JSON instruction blocks used without a database.
        ASSISTANT_TOOLS_CACHE_TTL_S: Lifetime of per-assistant tool lists.
        CATALOG_REFRESH_INTERVAL_S: Period of catalog reloads (0 disables).
        METRICS_LOG_INTERVAL_S: Period of metrics snapshot logging.
        MAX_USER_MESSAGE_CHARS: Maximum accepted length of a typed user turn.
        ASSISTANT_PLAYBACK_RATE: Playback rate advertised to browser clients.
        CLIENT_RECONNECT_FLOOR_MS: Reconnect backoff floor advertised to clients.
        BRIDGE_ADMIN_TOKEN: Bearer token for the catalog reload endpoint.
        DB_CONNECTION_STRING: Optional database connection string.
        DB_POOL_MAX_SIZE: Upper bound on pooled database connections.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    BRIDGE_PORT: int = Field(default=4001, ge=1, le=65535)
    LOG_LEVEL: str = "info"
    OBSERVABILITY_LOG_LEVEL: str = "info"
    WEBSOCKETS_LOG_LEVEL: str = "info"
    OPENAI_LOG: str = "info"

    OPENAI_API_KEY: str = ""
    OPENAI_REALTIME_URL: str = "wss://api.openai.com/v1/realtime"
    REALTIME_MODEL: str = "gpt-4o-mini-realtime-preview"
    REALTIME_MODEL_PREMIUM: str = "gpt-4o-realtime-preview"
    REALTIME_VOICE: str = "alloy"
    TURN_DETECTION_TYPE: str = "server_vad"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    TRANSCRIPTION_MODEL: str = "gpt-4o-mini-transcribe"
    TRANSCRIPTION_SAMPLE_RATE: int = Field(default=24000, gt=0)

    PINECONE_API_KEY: str = ""
    PINECONE_INDEX_HOST: str = ""
    PINECONE_NAMESPACE: str = "default"
    PINECONE_TOP_K: int = Field(default=5, ge=1)

    KNOWLEDGE_ITEMS_PATH: str = "knowledge_data/items.json"
    KNOWLEDGE_VECTORS_PATH: str = "knowledge_data/vectors.json"
    VECTOR_CONTEXT_MAX_SNIPPETS: int = Field(default=5, ge=1)
    VECTOR_CONTEXT_MAX_CHARS: int = Field(default=3000, ge=1)
    VECTOR_CONTEXT_MIN_SCORE: float = 0.2

    INPUT_VAD_ENABLED: bool = False
    INPUT_VAD_SAMPLE_RATE: int = 48000
    INPUT_VAD_FRAME_MS: int = 10
    INPUT_VAD_AGGRESSIVENESS: int = Field(default=3, ge=0, le=3)
    INPUT_VAD_MIN_FRAMES: int = Field(default=2, ge=0)
    INPUT_VAD_MIN_SPEECH_FRACTION: float = Field(default=0.2, ge=0.0, le=1.0)

    TOOL_API_BASE_URL: str = "http://localhost:4002/v1/tools"
    TOOL_API_TOKEN: str = ""
    TOOLS_CONFIG_PATH: str = "config/tools.json"
    SANITIZE_CONFIG_PATH: str = "config/sanitize.json"
    INSTRUCTIONS_CONFIG_PATH: str = "config/instructions.json"

    ASSISTANT_TOOLS_CACHE_TTL_S: float = Field(default=60.0, ge=0)
    CATALOG_REFRESH_INTERVAL_S: float = Field(default=300.0, ge=0)
    METRICS_LOG_INTERVAL_S: float = Field(default=60.0, gt=0)
    MAX_USER_MESSAGE_CHARS: int = Field(default=4000, ge=1)

    ASSISTANT_PLAYBACK_RATE: float = Field(default=1.0, gt=0)
    CLIENT_RECONNECT_FLOOR_MS: int = Field(default=1500, ge=0)
    BRIDGE_ADMIN_TOKEN: str = ""
    DB_CONNECTION_STRING: str | None = None
    DB_POOL_MAX_SIZE: int = Field(default=10, ge=1)

    @field_validator("INPUT_VAD_SAMPLE_RATE")
    @classmethod
    def validate_vad_sample_rate(cls, value: int) -> int:
        if value not in _VAD_SAMPLE_RATES:
            raise ValueError(f"INPUT_VAD_SAMPLE_RATE must be one of {_VAD_SAMPLE_RATES}")
        return value

    @field_validator("INPUT_VAD_FRAME_MS")
    @classmethod
    def validate_vad_frame_ms(cls, value: int) -> int:
        if value not in _VAD_FRAME_MS:
            raise ValueError(f"INPUT_VAD_FRAME_MS must be one of {_VAD_FRAME_MS}")
        return value

    @field_validator("PINECONE_INDEX_HOST", "TOOL_API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def remote_index_enabled(self) -> bool:
        """Returns whether remote vector index credentials are configured."""
        return bool(self.PINECONE_API_KEY and self.PINECONE_INDEX_HOST)

    def realtime_url(self, model: str | None = None) -> str:
        """Builds the upstream realtime websocket URL.

        Args:
            model: Optional model override; defaults to `REALTIME_MODEL`.

        Returns:
            Websocket URL including the `model` query parameter.
        """
        return f"{self.OPENAI_REALTIME_URL}?model={model or self.REALTIME_MODEL}"

    def model_for_tier(self, tier: str | None) -> str:
        """Maps a client-requested tier to the realtime model identifier."""
        if tier == "premium":
            return self.REALTIME_MODEL_PREMIUM
        return self.REALTIME_MODEL


settings = Settings()
