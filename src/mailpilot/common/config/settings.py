"""Configuration management - Centralized configuration for MailPilot.

Provides environment-aware configuration with sensible defaults.
All configuration is loaded from environment variables with fallbacks.
Deliberation and routing policy lives separately in config/policy_rules.yaml.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ProviderType(str, Enum):
    """Capability provider backends."""
    SCRIPTED = "scripted"
    HTTP = "http"


class ActionStoreType(str, Enum):
    """Action store backend types."""
    MEMORY = "memory"
    DYNAMODB = "dynamodb"


class MemoryStoreType(str, Enum):
    """Memory store backend types."""
    MEMORY = "memory"
    DYNAMODB = "dynamodb"


DEVELOPMENT_SIGNING_SECRET = "mailpilot-dev-signing-secret"


def _get_project_root() -> Path:
    """Get the project root directory."""
    # settings.py -> config -> common -> mailpilot -> src -> project_root
    current = Path(__file__).resolve()
    return current.parent.parent.parent.parent.parent


@dataclass
class Config:
    """Central configuration object for MailPilot.

    All settings can be overridden via environment variables prefixed with MAILPILOT_.

    Example:
        MAILPILOT_ENVIRONMENT=production
        MAILPILOT_SIGNING_SECRET=...
        MAILPILOT_PUBLIC_BASE_URL=https://pilot.example.com
    """

    # Core settings
    environment: Environment = field(
        default_factory=lambda: Environment(
            os.getenv("MAILPILOT_ENVIRONMENT", "development")
        )
    )
    debug: bool = field(
        default_factory=lambda: os.getenv("MAILPILOT_DEBUG", "false").lower() == "true"
    )
    log_level: LogLevel = field(
        default_factory=lambda: LogLevel(os.getenv("MAILPILOT_LOG_LEVEL", "INFO"))
    )

    # Paths
    project_root: Path = field(default_factory=_get_project_root)

    # API settings
    api_host: str = field(
        default_factory=lambda: os.getenv("MAILPILOT_API_HOST", "0.0.0.0")
    )
    api_port: int = field(
        default_factory=lambda: int(os.getenv("MAILPILOT_API_PORT", "8000"))
    )
    public_base_url: str = field(
        default_factory=lambda: os.getenv("MAILPILOT_PUBLIC_BASE_URL", "http://localhost:8000")
    )

    # Signed confirmation links
    signing_secret: str = field(
        default_factory=lambda: os.getenv("MAILPILOT_SIGNING_SECRET", DEVELOPMENT_SIGNING_SECRET)
    )

    # Capability provider
    provider_type: ProviderType = field(
        default_factory=lambda: ProviderType(
            os.getenv("MAILPILOT_PROVIDER", "scripted")
        )
    )
    provider_url: Optional[str] = field(
        default_factory=lambda: os.getenv("MAILPILOT_PROVIDER_URL")
    )
    provider_token: Optional[str] = field(
        default_factory=lambda: os.getenv("MAILPILOT_PROVIDER_TOKEN")
    )
    provider_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("MAILPILOT_PROVIDER_TIMEOUT", "20"))
    )

    # Action store
    action_store_type: ActionStoreType = field(
        default_factory=lambda: ActionStoreType(
            os.getenv("MAILPILOT_ACTION_STORE", "memory")
        )
    )
    actions_dynamodb_table: Optional[str] = field(
        default_factory=lambda: os.getenv("MAILPILOT_ACTIONS_TABLE")
    )

    # Memory store
    memory_store_type: MemoryStoreType = field(
        default_factory=lambda: MemoryStoreType(
            os.getenv("MAILPILOT_MEMORY_STORE", "memory")
        )
    )
    memories_dynamodb_table: Optional[str] = field(
        default_factory=lambda: os.getenv("MAILPILOT_MEMORIES_TABLE")
    )
    aws_region: str = field(
        default_factory=lambda: os.getenv("AWS_DEFAULT_REGION", "us-east-1")
    )

    # Audit trail of agent steps
    agent_step_log_dir: Optional[Path] = field(
        default_factory=lambda: (
            Path(os.environ["MAILPILOT_AGENT_STEP_LOG_DIR"])
            if os.getenv("MAILPILOT_AGENT_STEP_LOG_DIR") else None
        )
    )

    # Policy settings
    policy_file: Path = field(
        default_factory=lambda: Path(
            os.getenv("MAILPILOT_POLICY_FILE", "./config/policy_rules.yaml")
        )
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.action_store_type == ActionStoreType.DYNAMODB:
            if not self.actions_dynamodb_table:
                raise ValueError(
                    "MAILPILOT_ACTIONS_TABLE must be set when using the DynamoDB action store"
                )

        if self.memory_store_type == MemoryStoreType.DYNAMODB:
            if not self.memories_dynamodb_table:
                raise ValueError(
                    "MAILPILOT_MEMORIES_TABLE must be set when using the DynamoDB memory store"
                )

        if self.provider_type == ProviderType.HTTP and not self.provider_url:
            raise ValueError(
                "MAILPILOT_PROVIDER_URL must be set when using the HTTP provider"
            )

        if self.environment == Environment.PRODUCTION:
            if self.provider_type == ProviderType.SCRIPTED:
                raise ValueError(
                    "The scripted provider is for development only; set MAILPILOT_PROVIDER=http"
                )
            if self.signing_secret == DEVELOPMENT_SIGNING_SECRET:
                raise ValueError(
                    "MAILPILOT_SIGNING_SECRET must be set in production"
                )
            if self.debug:
                import warnings
                warnings.warn(
                    "Debug mode is enabled in production environment",
                    RuntimeWarning,
                    stacklevel=2
                )

    @property
    def config_dir(self) -> Path:
        """Get the config directory path."""
        return self.project_root / "config"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT


# Singleton instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config: The global configuration singleton.
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
