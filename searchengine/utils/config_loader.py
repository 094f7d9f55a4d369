import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from searchengine.utils.env_loader import load_environment
from searchengine.utils.url_utils import is_within_site


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.3"
)
DEFAULT_DATABASE_URL = "sqlite://searchengine.sqlite3"
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "../config/application.yaml")


class SiteConfig(BaseModel):
    url: str
    name: str

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")


class Config(BaseSettings):
    sites: List[SiteConfig] = []
    database_url: str = DEFAULT_DATABASE_URL

    # politeness delay bounds, seconds
    crawl_delay_min: float = 0.5
    crawl_delay_max: float = 5.0
    request_timeout: float = 10.0
    max_fetch_attempts: int = 3
    user_agent: str = DEFAULT_USER_AGENT
    referrer: str = "http://www.google.com"

    workers_per_site: int = 8
    max_concurrent_fetches: int = 32

    frequent_lemma_threshold: float = 0.1
    snippet_length: int = 300

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    log_level: str = "INFO"
    log_path: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="SEARCHENGINE_", env_file=".env", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # environment beats the YAML file, which is passed as init kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    config_path = path or os.getenv("SEARCHENGINE_CONFIG") or DEFAULT_CONFIG_PATH
    if not os.path.exists(config_path):
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Optional[str] = None) -> Config:
    load_environment()
    file_data = _load_yaml_config(path)

    # plain DATABASE_URL is honoured so the service can share a deployment env
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        file_data["database_url"] = database_url

    return Config(**file_data)


def find_site_config(config: Config, url: str) -> Optional[SiteConfig]:
    """Return the configured site whose URL is a prefix of ``url``."""
    for site in config.sites:
        if is_within_site(site.url, url):
            return site
    return None
