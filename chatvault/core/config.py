from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "ChatVault"
    debug: bool = False

    # Database
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "chatvault.db"
    database_url: str = ""  # overrides db_path when set

    # Credential encryption
    encryption_key: str = ""  # 64 hex chars (32 bytes); empty = temporary key
    require_persistent_key: bool = False

    # LLM
    llm_provider: str = "gemini"  # gemini
    gemini_api_key: str = ""  # default credential when a user has none
    gemini_model: str = "gemini-2.0-flash"
    provider_timeout: float = 60.0
    provider_max_attempts: int = 2
    provider_retry_backoff: float = 0.5

    # Conversation
    reply_persist_attempts: int = 3

    # Admin
    admin_log_limit: int = 1000

    # Auth - header set by the upstream authentication proxy
    user_id_header: str = "X-User-Id"
    # A request after this much inactivity counts as a new login
    login_refresh_minutes: int = 30

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "CHATVAULT_",
    }

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or f"sqlite:///{self.db_path}"


settings = Settings()
