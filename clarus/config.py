from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_referer: str = "https://clarusapp.io"
    openrouter_title: str = "Clarus"
    claim_extraction_model: str = "google/gemini-2.5-flash-lite"

    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_schema: str = "clarus"

    # Acquisition providers
    supadata_api_key: str = ""
    supadata_base_url: str = "https://api.supadata.ai/v1"
    firecrawl_api_key: str = ""
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    assemblyai_api_key: str = ""
    assemblyai_webhook_token: str = ""

    # Tavily
    tavily_api_key: str = ""
    search_max_results: int = 3
    search_max_retries: int = 2

    # Timeouts (seconds)
    ai_call_timeout: float = 120.0
    search_timeout: float = 15.0
    scrape_timeout: float = 30.0
    video_metadata_timeout: float = 30.0
    video_transcript_timeout: float = 60.0
    topic_extraction_timeout: float = 10.0
    tone_detection_timeout: float = 10.0
    phase1_timeout: float = 20.0
    pipeline_timeout: float = 240.0

    # Prompt cache
    prompt_cache_ttl_seconds: float = 300.0

    # App
    app_url: str = "http://localhost:8000"
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def webhook_url(self) -> str:
        base = self.app_url.rstrip("/") + "/api/assemblyai-webhook"
        if self.assemblyai_webhook_token:
            return f"{base}?token={self.assemblyai_webhook_token}"
        return base


settings = Settings()
