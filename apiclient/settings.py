from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    # API Configuration
    api_base_url: str = Field(default="http://localhost:8080", alias="API_BASE_URL")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")

    # Timeouts (seconds)
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")
    upload_timeout: float = Field(default=120.0, alias="UPLOAD_TIMEOUT")

    # CSRF Configuration
    csrf_cookie_name: str = Field(default="csrf_token", alias="CSRF_COOKIE_NAME")
    csrf_token_path: str = Field(default="/api/v1/csrf-token", alias="CSRF_TOKEN_PATH")

    # Auth Configuration
    auth_login_path: str = Field(default="/api/auth/login", alias="AUTH_LOGIN_PATH")
    auth_register_path: str = Field(
        default="/api/auth/register", alias="AUTH_REGISTER_PATH"
    )
    auth_refresh_path: str = Field(default="/api/auth/refresh", alias="AUTH_REFRESH_PATH")
    auth_logout_path: str = Field(default="/api/auth/logout", alias="AUTH_LOGOUT_PATH")
    auth_me_path: str = Field(default="/api/auth/me", alias="AUTH_ME_PATH")
    # JSON list in the environment, e.g. AUTH_EXEMPT_PATHS='["/auth/login"]'
    auth_exempt_paths: list[str] = Field(
        default_factory=lambda: ["/auth/login", "/auth/refresh", "/auth/register"],
        alias="AUTH_EXEMPT_PATHS",
    )
    auth_grace_seconds: float = Field(default=5.0, alias="AUTH_GRACE_SECONDS")
    propagation_delay: float = Field(default=0.5, alias="PROPAGATION_DELAY")
    heartbeat_interval: float = Field(default=300.0, alias="HEARTBEAT_INTERVAL")

    # Circuit Breaker Configuration
    circuit_failure_threshold: int = Field(default=3, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_reset_seconds: float = Field(default=10.0, alias="CIRCUIT_RESET_SECONDS")

    # Session storage scope (one per tab / connection)
    session_scope: str = Field(default="default", alias="SESSION_SCOPE")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    model_config = {"populate_by_name": True, "extra": "ignore"}


global_settings = Settings()
