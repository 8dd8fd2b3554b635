"""
Configuration Management Module

Provides centralized configuration using pydantic-settings. Values resolve
from environment variables first, then the dotenv-style config file, then
the defaults below.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic_settings import BaseSettings


class EconomyConfig(BaseSettings):
    """Game economy ledger configuration"""

    # Backend selection: "sqlite" (embedded) or "postgresql" (pooled)
    db_type: str = "sqlite"

    # Embedded store
    data_dir: str = "data"
    sqlite_path: Optional[str] = None  # Defaults to <data_dir>/economy.db

    # Pooled store
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "economy"
    db_user: str = "economy"
    db_password: str = ""
    db_ssl: bool = False
    db_pool_size: int = 10
    db_min_idle: int = 2
    db_connection_timeout: float = 30.0  # seconds
    db_leak_detection_threshold: float = 10.0  # seconds, 0 disables

    # Ledger behaviour
    default_currency: str = "coin"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    class Config:
        env_prefix = "GAME_ECONOMY_"
        env_file = ".env"
        case_sensitive = False

    @property
    def resolved_sqlite_path(self) -> Path:
        """SQLite file location, falling back to a file inside data_dir"""
        if self.sqlite_path:
            return Path(self.sqlite_path)
        return Path(self.data_dir) / "economy.db"

    @property
    def postgresql_connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments handed to psycopg2.connect by the pooled store"""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
            "sslmode": "require" if self.db_ssl else "prefer",
            "connect_timeout": max(1, int(self.db_connection_timeout)),
        }


# Global configuration instance
config = EconomyConfig()


def get_config() -> EconomyConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> EconomyConfig:
    """Reload configuration from environment"""
    global config
    config = EconomyConfig()
    return config


def load_config(env_file: Union[str, Path]) -> EconomyConfig:
    """Load configuration from a specific config file; environment still wins"""
    global config
    config = EconomyConfig(_env_file=str(env_file))
    return config
