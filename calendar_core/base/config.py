"""
Configuration management for the event lifecycle engine.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "config.yaml"


class ConfigManager(BaseSettings):
    """
    Centralized configuration management using Pydantic settings.
    Loads from environment variables and YAML config files.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
    
    # System settings
    environment: str = Field(default="development")
    debug: bool = Field(default=True)
    log_level: str = Field(default="INFO")
    
    # API Keys
    fmp_api_key: Optional[str] = Field(default=None)
    
    # Configuration file
    config_file_path: str = Field(default=str(DEFAULT_CONFIG_PATH))
    
    _config_data: Dict[str, Any] = PrivateAttr(default_factory=dict)
    
    def model_post_init(self, __context: Any) -> None:
        self._config_data = self._load_config_file()
    
    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        config_path = Path(self.config_file_path)
        
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Error parsing config file: {e}")
        except OSError as e:
            raise ConfigError(f"Error loading config file: {e}")
    
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.
        
        Args:
            key: Configuration key in dot notation (e.g., 'reconciliation.interval_seconds')
            default: Default value if key not found
            
        Returns:
            Configuration value
        """
        try:
            keys = key.split('.')
            value = self._config_data
            
            for k in keys:
                value = value[k]
            
            return value
        except (KeyError, TypeError):
            return default
    
    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.
        
        Args:
            section: Section name
            
        Returns:
            Dictionary containing section configuration
        """
        return self._config_data.get(section, {}) or {}
    
    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"
    
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


# Global configuration instance
config = ConfigManager()
