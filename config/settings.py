"""
Settings Configuration
Pydantic-based configuration loaded from the environment / .env
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Text generation provider configuration"""
    model_config = SettingsConfigDict(env_prefix="LLM_", extra="ignore")

    provider: str = Field(default="anthropic", description="Provider: anthropic, openai")
    model_name: Optional[str] = Field(default=None, description="Script/summary model (provider default if unset)")
    scoring_model_name: Optional[str] = Field(default=None, description="Cheaper model used for relevance scoring")
    temperature: float = Field(default=0.7, description="Sampling temperature")
    max_tokens: int = Field(default=4096, description="Default max output tokens")
    timeout: float = Field(default=120.0, description="Request timeout (seconds)")

    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API Key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")


class PipelineSettings(BaseSettings):
    """Briefing pipeline policy knobs"""
    model_config = SettingsConfigDict(env_prefix="BRIEFING_", extra="ignore")

    dedup_window_days: int = Field(default=7, description="Trailing window for recency dedup")
    min_score: float = Field(default=6.0, description="Score threshold on the 0-10 scale")
    min_items: int = Field(default=8, description="Minimum items kept after scoring")
    max_items: int = Field(default=12, description="Maximum items kept after scoring")
    recent_episode_count: int = Field(default=5, description="Episodes used for the covered-topics digest")
    chat_episode_limit: int = Field(default=10, description="Episodes included in the episode-chat context")
    min_script_chars: int = Field(default=200, description="Shortest acceptable generated script")
    min_audio_script_chars: int = Field(default=100, description="Shortest script accepted for audio")
    words_per_minute: int = Field(default=150, description="Speaking-rate assumption for timing")
    parallel_adapters: List[str] = Field(
        default_factory=lambda: ["feed", "scrape", "transcript"],
        description="Adapters fetched concurrently",
    )
    sequential_adapters: List[str] = Field(
        default_factory=lambda: ["web_search"],
        description="Rate-limit sensitive adapters, run one after another",
    )
    adapter_timeout_sec: float = Field(default=180.0, description="Per-adapter collection timeout")
    feed_hours_back: int = Field(default=24, description="Feed entries older than this are skipped")
    transcript_hours_back: int = Field(default=48, description="Videos older than this are skipped")
    max_results_per_query: int = Field(default=5, description="Web search results kept per query")
    timezone: str = Field(default="Europe/London", description="Timezone used for the episode date")
    focus: str = Field(
        default="AI, agentic commerce and marketing disruption",
        description="Editorial focus woven into the prompts",
    )
    youtube_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BRIEFING_YOUTUBE_API_KEY", "YOUTUBE_API_KEY"),
        description="YouTube Data API key",
    )


class TTSSettings(BaseSettings):
    """Audio synthesis configuration"""
    model_config = SettingsConfigDict(env_prefix="TTS_", extra="ignore")

    provider: str = Field(default="elevenlabs", description="Synthesizer: elevenlabs, local")
    api_key: Optional[str] = Field(default=None, description="ElevenLabs API key")
    voice_id: str = Field(default="21m00Tcm4TlvDq8ikWAM", description="Voice identifier")
    model_id: str = Field(default="eleven_multilingual_v2", description="Synthesis model")
    output_format: str = Field(default="mp3_44100_128", description="ElevenLabs output format")
    stability: float = Field(default=0.5)
    similarity_boost: float = Field(default=0.75)
    timeout: float = Field(default=300.0, description="Request timeout (seconds)")


class StorageSettings(BaseSettings):
    """Relational and blob storage configuration"""
    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    backend: str = Field(default="sql", description="Relational store: sql, memory")
    database_url: str = Field(default="sqlite:///./data/briefing.db", description="SQLAlchemy URL")
    blob_backend: str = Field(default="local", description="Blob store: local, s3")
    blob_root: str = Field(default="./data/audio", description="Local blob directory")
    public_base_url: str = Field(default="http://localhost:8000/audio", description="Public prefix for blob URLs")
    bucket: str = Field(default="briefing-audio", description="S3 bucket name")
    s3_endpoint: Optional[str] = Field(default=None, description="S3-compatible endpoint URL")
    s3_region: str = Field(default="us-east-1")
    s3_key_id: Optional[str] = Field(default=None)
    s3_secret: Optional[str] = Field(default=None)


class NotifierSettings(BaseSettings):
    """Slack incoming-webhook configuration"""
    model_config = SettingsConfigDict(env_prefix="SLACK_", extra="ignore")

    webhook_url: Optional[str] = Field(default=None, description="Incoming webhook URL")
    timeout: float = Field(default=10.0)


class APISettings(BaseSettings):
    """HTTP surface and schedule configuration"""
    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")

    key: Optional[str] = Field(default=None, description="API key; auth is open when unset")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    schedule_cron_hour: int = Field(default=6, description="Local hour of the scheduled run")
    schedule_cron_minute: int = Field(default=0, description="Local minute of the scheduled run")
    schedule_timezone: str = Field(default="Europe/London")
    schedule_enabled: bool = Field(default=True)
    schedule_poll_sec: float = Field(default=60.0)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseSettings):
    """Top-level settings aggregating every section"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO")
    llm: LLMSettings = Field(default_factory=LLMSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    tts: TTSSettings = Field(default_factory=TTSSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)
    api: APISettings = Field(default_factory=APISettings)

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings, reading ``config/.env`` first when present."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            llm=LLMSettings(),
            pipeline=PipelineSettings(),
            tts=TTSSettings(),
            storage=StorageSettings(),
            notifier=NotifierSettings(),
            api=APISettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton"""
    return Settings.load_from_env_file()


def get_llm_settings() -> LLMSettings:
    return get_settings().llm


def get_pipeline_settings() -> PipelineSettings:
    return get_settings().pipeline


def get_tts_settings() -> TTSSettings:
    return get_settings().tts


def get_storage_settings() -> StorageSettings:
    return get_settings().storage


def get_notifier_settings() -> NotifierSettings:
    return get_settings().notifier


def get_api_settings() -> APISettings:
    return get_settings().api
