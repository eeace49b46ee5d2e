from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _aliases(name: str) -> AliasChoices:
    return AliasChoices(name, f"VIRAL_PIPELINE_{name}")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "viral-pipeline"
    environment: str = Field(default="local", validation_alias=_aliases("ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/viral_pipeline",
        validation_alias=_aliases("DATABASE_URL"),
    )

    # Queue backend. An explicit REDIS_URL always selects the durable backend;
    # otherwise the probe URL is tried once at startup.
    redis_url: str | None = Field(default=None, validation_alias=_aliases("REDIS_URL"))
    redis_probe_url: str = Field(default="redis://127.0.0.1:6379/0", validation_alias=_aliases("REDIS_PROBE_URL"))
    queue_backend: str = Field(default="auto", validation_alias=_aliases("QUEUE_BACKEND"))
    direct_max_chain_depth: int = Field(default=16, validation_alias=_aliases("DIRECT_MAX_CHAIN_DEPTH"))
    job_max_attempts: int = Field(default=3, validation_alias=_aliases("JOB_MAX_ATTEMPTS"))
    job_initial_backoff_sec: float = Field(default=5.0, validation_alias=_aliases("JOB_INITIAL_BACKOFF_SEC"))

    scrape_concurrency: int = Field(default=3, validation_alias=_aliases("SCRAPE_CONCURRENCY"))
    analyze_concurrency: int = Field(default=5, validation_alias=_aliases("ANALYZE_CONCURRENCY"))
    translate_concurrency: int = Field(default=3, validation_alias=_aliases("TRANSLATE_CONCURRENCY"))
    generate_concurrency: int = Field(default=2, validation_alias=_aliases("GENERATE_CONCURRENCY"))
    publish_concurrency: int = Field(default=2, validation_alias=_aliases("PUBLISH_CONCURRENCY"))

    # Credentials (environment wins over the settings table)
    apify_token: str | None = Field(default=None, validation_alias=_aliases("APIFY_TOKEN"))
    openai_api_key: str | None = Field(default=None, validation_alias=_aliases("OPENAI_API_KEY"))
    gemini_api_key: str | None = Field(default=None, validation_alias=_aliases("GEMINI_API_KEY"))

    apify_actor_id: str = Field(default="apify~instagram-post-scraper", validation_alias=_aliases("APIFY_ACTOR_ID"))
    scrape_results_limit: int = Field(default=50, validation_alias=_aliases("SCRAPE_RESULTS_LIMIT"))
    scrape_poll_interval_sec: float = Field(default=10.0, validation_alias=_aliases("SCRAPE_POLL_INTERVAL_SEC"))
    scrape_max_wait_sec: float = Field(default=300.0, validation_alias=_aliases("SCRAPE_MAX_WAIT_SEC"))

    openai_model: str = Field(default="gpt-4o", validation_alias=_aliases("OPENAI_MODEL"))
    gemini_image_model: str = Field(default="gemini-3-pro-image-preview", validation_alias=_aliases("GEMINI_IMAGE_MODEL"))
    target_language: str = Field(default="Hebrew", validation_alias=_aliases("TARGET_LANGUAGE"))

    graph_api_base: str = Field(default="https://graph.facebook.com/v22.0", validation_alias=_aliases("GRAPH_API_BASE"))
    container_poll_interval_sec: float = Field(default=5.0, validation_alias=_aliases("CONTAINER_POLL_INTERVAL_SEC"))
    container_max_wait_sec: float = Field(default=60.0, validation_alias=_aliases("CONTAINER_MAX_WAIT_SEC"))

    public_base_url: str | None = Field(default=None, validation_alias=_aliases("PUBLIC_BASE_URL"))
    images_dir: str = Field(default="public/images", validation_alias=_aliases("IMAGES_DIR"))
    port: int = Field(default=8000, validation_alias=_aliases("PORT"))

    scheduler_enabled: bool = Field(default=True, validation_alias=_aliases("SCHEDULER_ENABLED"))
    scheduler_tick_minutes: int = Field(default=5, validation_alias=_aliases("SCHEDULER_TICK_MINUTES"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url

    def stage_concurrency(self, stage: str) -> int:
        return int(getattr(self, f"{stage}_concurrency", 1))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
