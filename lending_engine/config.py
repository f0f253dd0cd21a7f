"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LendingConfig(BaseSettings):
    """Lending engine configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///lending.db"  # memory://, sqlite:///path or postgresql://...
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Business rules configuration
    money_tolerance: str = "0.01"  # Equality tolerance for currency amounts
    day_count_basis: int = 365
    default_currency: str = "USD"
    archive_retention_days: int = 30
    
    # Feature flags
    enable_optimistic_locking: bool = True
    
    class Config:
        env_prefix = "LENDING_"
        env_file = ".env"
        case_sensitive = False
    
    def storage_backend(self) -> str:
        """Name of the storage backend selected by database_url"""
        if self.database_url.startswith(("postgresql://", "postgres://")):
            return "postgresql"
        if self.database_url.startswith("memory://"):
            return "memory"
        return "sqlite"
    
    def sqlite_path(self) -> str:
        """Filesystem path for the SQLite backend"""
        path = self.database_url.replace("sqlite:///", "", 1)
        return path or ":memory:"


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
