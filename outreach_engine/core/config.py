"""
Configuration Management
Loads settings from environment variables and optional YAML overrides
"""
import yaml
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = "development"
    debug: bool = True

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Store
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Process-wide fallback credentials (organization_credentials wins when set)
    vonage_api_key: Optional[str] = None
    vonage_api_secret: Optional[str] = None
    vonage_from_number: Optional[str] = None
    resend_api_key: Optional[str] = None
    email_from_address: str = "Leasing Team <notifications@example.com>"
    bland_api_key: Optional[str] = None
    voice_webhook_url: Optional[str] = None

    # Personalization defaults when the organization row has no value
    default_org_name: str = "our leasing team"
    default_org_phone: str = ""

    # Provider cost table
    sms_unit_cost: float = 0.0079
    email_unit_cost: float = 0.001
    voice_unit_cost_per_minute: float = 0.09
    voice_estimated_minutes: float = 2.0

    # Provider HTTP timeout (seconds)
    provider_timeout: float = 15.0

    # Task dispatcher worker
    dispatcher_poll_interval: float = 30.0
    dispatcher_batch_size: int = 20
    stale_claim_minutes: int = 15
    # How far a task for a draft campaign is pushed back before it is re-checked
    draft_recheck_minutes: int = 5


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance."""
    return Settings()


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: Optional[str] = None, config_dir: Optional[Path] = None):
        self.env = env or os.getenv("ENVIRONMENT", "development")
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("contact_rules.timezone") -> "America/New_York"
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value
