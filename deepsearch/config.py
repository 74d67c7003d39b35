from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "deepseek/deepseek-chat"
    openrouter_model: str = ""
    planner_model: str = ""  # optional override for plan generation only
    plan_temperature: float = 0.3
    analysis_temperature: float = 0.5
    report_temperature: float = 0.3
    report_max_tokens: int = 4000
    llm_timeout_seconds: float = 120.0

    # Search provider
    search_provider: str = "tavily"  # tavily | brave
    tavily_api_key: str = ""
    brave_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_min_results: int = 4
    search_max_results: int = 12
    search_timeout_seconds: float = 30.0

    # Persistence
    store_backend: str = "supabase"  # supabase | memory
    supabase_url: str = ""
    supabase_anon_key: str = ""
    messages_table: str = "messages"

    # Step payload previews
    step_preview_count: int = 4
    insight_preview_count: int = 2

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
