from typing import Optional

from pydantic_settings import BaseSettings

# Floor for the pre-expiry refresh window.
MIN_REFRESH_MARGIN_MINUTES = 5


class Settings(BaseSettings):
    xero_client_id: str = ""
    xero_client_secret: str = ""
    xero_redirect_uri: str = ""
    xero_scopes: str = (
        "openid profile email offline_access "
        "accounting.transactions accounting.contacts accounting.settings"
    )
    xero_api_base_url: str = "https://api.xero.com/api.xro/2.0"
    xero_identity_url: str = "https://identity.xero.com"
    xero_login_url: str = "https://login.xero.com/identity/connect/authorize"
    xero_connections_url: str = "https://api.xero.com/connections"

    database_url: str = "sqlite:///./ledgersync.db"
    log_level: str = "INFO"

    token_refresh_margin_minutes: int = MIN_REFRESH_MARGIN_MINUTES
    token_refresh_interval_minutes: int = 10

    sync_page_size: int = 100
    sync_max_pages: int = 100
    sync_inter_page_delay_ms: int = 200
    sync_page_retries: int = 2
    sync_run_timeout_seconds: int = 300  # hard ceiling per pull run
    sync_error_report_limit: int = 100

    log_retention_days: int = 90
    xero_sync_hour: int = 2

    telegram_bot_token: str = ""
    default_currency: str = "SGD"
    user_id: Optional[str] = None  # attributed to scheduled runs

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def refresh_margin_minutes(self) -> int:
        """Configured refresh margin, clamped to the five minute floor."""
        return max(self.token_refresh_margin_minutes, MIN_REFRESH_MARGIN_MINUTES)

    @property
    def scope_list(self) -> list[str]:
        return self.xero_scopes.split()


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
