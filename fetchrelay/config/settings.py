from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------
# Settings (env-driven config)
# ---------------------------
class RelaySettings(BaseSettings):
    VERSION: str = "1.7.0"

    # Shared secret; empty disables the check
    PASSWORD: str = ""

    # Retry loop
    FETCH_MAX: int = 3
    FETCH_MAX_SIZE: int = 1024 * 1024  # Range cap after RESPONSE_TOO_LARGE
    DEADLINE: float = 30.0  # seconds, doubled on timeouts/fetch errors
    RETRY_SLEEP: float = 1.0
    UNKNOWN_SLEEP: float = 4.0

    # Upstream transport
    UPSTREAM_MAX_SIZE: int = 32 * 1024 * 1024
    VERIFY_TLS: bool = True

    # False reproduces the legacy behaviour of carrying on after a
    # wrong password / unsupported scheme notification
    HALT_ON_REJECTION: bool = True

    # Hosting
    FETCH_PATH: str = "/fetch.py"
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> RelaySettings:
    return RelaySettings()
