"""
Configuration management using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List, Optional

# Load .env file into os.environ so all nested BaseSettings pick up values
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)


def parse_ignore_list(raw: str) -> List[str]:
    """
    Split a comma-separated plugin prefix list.

    An empty or blank string means "ignore nothing". Entries are stripped of
    surrounding whitespace; an entry that ends up empty is kept and matches
    every plugin name.
    """
    if not raw or not raw.strip():
        return []
    return [part.strip() for part in raw.split(",")]


class MuninSettings(BaseSettings):
    """munin-node connection and scrape configuration"""
    host: str = Field(default="localhost")
    port: int = Field(default=4949)
    ignore: str = Field(default="")
    metric_prefix: str = Field(default="")
    scrape_interval_seconds: int = Field(default=60, ge=1)

    @property
    def ignore_prefixes(self) -> List[str]:
        return parse_ignore_list(self.ignore)

    class Config:
        env_prefix = "MUNIN_"


class ReconnectSettings(BaseSettings):
    """Reconnect policy used when munin-node drops the connection"""
    interval_seconds: float = Field(default=1.0, ge=0)
    max_attempts: Optional[int] = Field(default=None, ge=1)

    class Config:
        env_prefix = "RECONNECT_"


class ServerSettings(BaseSettings):
    """Prometheus exposition endpoint configuration"""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    path: str = Field(default="/metrics")

    class Config:
        env_prefix = "LISTEN_"


class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: str = Field(default="INFO")

    class Config:
        env_prefix = "LOG_"


class Settings(BaseSettings):
    """Main settings aggregating all configuration sections"""
    munin: MuninSettings = Field(default_factory=MuninSettings)
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    class Config:
        extra = "ignore"


# Singleton instance - import this in other modules
try:
    settings = Settings()
except Exception as e:
    # A malformed environment should not prevent the module from importing
    print(f"Warning: Could not load settings: {e}")
    settings = None
