from pydantic_settings import BaseSettings, SettingsConfigDict

PLATFORM_ENVIRONMENT = {
    "twitter": (
        ("twitter_api_key", "TWITTER_API_KEY"),
        ("twitter_api_secret", "TWITTER_API_SECRET"),
        ("twitter_access_token", "TWITTER_ACCESS_TOKEN"),
        ("twitter_access_token_secret", "TWITTER_ACCESS_TOKEN_SECRET"),
        ("twitter_callback_url", "TWITTER_CALLBACK_URL"),
    ),
    "instagram": (
        ("instagram_app_id", "INSTAGRAM_APP_ID"),
        ("instagram_app_secret", "INSTAGRAM_APP_SECRET"),
        ("instagram_redirect_uri", "INSTAGRAM_REDIRECT_URI"),
    ),
}


class Settings(BaseSettings):
    app_name: str = "Social Connect"
    app_env: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "social_connect"
    postgres_user: str = "social_connect"
    postgres_password: str = "social_connect"

    redis_host: str = "localhost"
    redis_port: int = 6379

    database_url: str | None = None
    redis_url: str | None = None
    app_origin: str = "http://localhost:3000"
    public_app_url: str = "http://localhost:3000"
    additional_frontend_origins: str = ""
    worker_heartbeat_key: str = "worker:heartbeat"
    worker_heartbeat_ttl_seconds: int = 45

    auth_jwt_secret: str = "change_this_in_production"
    auth_jwt_algorithm: str = "HS256"
    auth_session_expire_minutes: int = 60
    token_encryption_key: str | None = None

    enabled_platforms: str = "twitter,instagram"
    oauth_callback_timeout_seconds: float = 120.0
    statistics_refresh_interval_seconds: float = 14400.0
    statistics_post_limit: int = 50
    statistics_period_days: int = 30
    connection_cache_ttl_seconds: int = 86400
    auth_pending_ttl_seconds: int = 300
    platform_http_timeout_seconds: float = 20.0

    twitter_api_key: str | None = None
    twitter_api_secret: str | None = None
    twitter_access_token: str | None = None
    twitter_access_token_secret: str | None = None
    twitter_callback_url: str | None = None
    twitter_api_base_url: str = "https://api.twitter.com"
    # "live" exchanges the verifier, "static" reuses the configured long-lived token pair
    twitter_token_exchange_mode: str = "live"

    instagram_app_id: str | None = None
    instagram_app_secret: str | None = None
    instagram_redirect_uri: str | None = None
    instagram_oauth_scope: str = "instagram_business_basic,instagram_business_content_publish"
    instagram_graph_api_base_url: str = "https://graph.instagram.com/v21.0"
    instagram_webhook_verify_token: str | None = None
    instagram_webhook_fields: str = "comments,messages"

    publish_retry_delay_seconds: int = 30
    publish_max_retries: int = 5

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def enabled_platform_list(self) -> list[str]:
        return [value.strip().lower() for value in self.enabled_platforms.split(",") if value.strip()]

    @property
    def cors_allowed_origins(self) -> list[str]:
        origins = [self.app_origin.strip(), self.public_app_url.strip()]
        if self.additional_frontend_origins.strip():
            origins.extend(
                [value.strip() for value in self.additional_frontend_origins.split(",") if value.strip()]
            )
        unique: list[str] = []
        for origin in origins:
            if origin and origin not in unique:
                unique.append(origin)
        return unique

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cache_redis_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    def missing_platform_settings(self, platform: str) -> list[str]:
        required = PLATFORM_ENVIRONMENT.get(platform.strip().lower(), ())
        return [env_name for field_name, env_name in required if not (getattr(self, field_name) or "").strip()]

    def missing_enabled_platform_settings(self) -> list[str]:
        missing: list[str] = []
        for platform in self.enabled_platform_list:
            missing.extend(self.missing_platform_settings(platform))
        return missing


settings = Settings()
