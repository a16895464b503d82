from functools import lru_cache
from typing import Dict, Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_URLS = {
    "development": "https://api-dev.pdf4me.com",
    "production": "https://api.pdf4me.com",
}


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DOC_API_", env_file=".env", extra="ignore")

    environment: Literal["development", "production"] = "production"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    request_timeout: float = 60.0  # seconds, per HTTP request
    async_flag: bool = True

    @model_validator(mode="after")
    def _default_base_url(self) -> "ClientSettings":
        if not self.base_url:
            self.base_url = BASE_URLS[self.environment]
        self.base_url = self.base_url.rstrip("/")
        return self

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Basic {self.api_key}"
        return headers


@lru_cache()
def get_settings() -> ClientSettings:
    """
    Get cached settings to avoid reloading from environment each time.
    """
    return ClientSettings()
