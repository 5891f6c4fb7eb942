"""
Configuration module for the programming mentor knowledge graph.

This module provides environment configuration management for the Neo4j
connection, the LLM analysis collaborator and application-level logging
settings.
"""

import logging
import sys
from enum import Enum
from typing import Optional, Dict, Any, Union
from pathlib import Path
from dataclasses import dataclass, field

import logfire
from dotenv import load_dotenv
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


# Load environment variables from .env file
load_dotenv()


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
SECRET_MASK = "********"


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level configuration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LLMProvider(str, Enum):
    """Supported LLM providers for conversation analysis."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class Neo4jConfig(BaseSettings):
    """Neo4j database configuration settings."""

    model_config = SettingsConfigDict(env_prefix="NEO4J_", case_sensitive=False, extra="ignore")

    uri: str = Field(
        default="neo4j://localhost:7687",
        description="Neo4j connection URI"
    )
    user: str = Field(
        default="neo4j",
        description="Neo4j username"
    )
    password: SecretStr = Field(
        ...,
        description="Neo4j password"
    )
    database: str = Field(
        default="neo4j",
        description="Neo4j database name"
    )
    max_connection_lifetime: int = Field(
        default=3600,
        gt=0,
        description="Maximum connection lifetime in seconds"
    )
    max_connection_pool_size: int = Field(
        default=50,
        gt=0,
        description="Maximum connection pool size"
    )
    connection_acquisition_timeout: int = Field(
        default=60,
        gt=0,
        description="Connection acquisition timeout in seconds"
    )
    connect_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts made when establishing the driver"
    )

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        """Validate Neo4j URI format."""
        valid_schemes = ["bolt", "bolt+s", "bolt+ssc", "neo4j", "neo4j+s", "neo4j+ssc"]
        scheme = v.split("://")[0].lower()
        if scheme not in valid_schemes:
            raise ValueError(f"Invalid Neo4j URI scheme: {scheme}. Must be one of {valid_schemes}")
        return v


class LLMConfig(BaseSettings):
    """LLM collaborator configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_", case_sensitive=False, extra="ignore", protected_namespaces=()
    )

    provider: LLMProvider = Field(
        default=LLMProvider.ANTHROPIC,
        description="LLM provider used for conversation analysis"
    )
    api_key: Optional[SecretStr] = Field(
        None,
        description="Provider API key; falls back to the provider's own env variable"
    )
    model_name: str = Field(
        default="claude-sonnet-4-5",
        description="Model identifier passed to the provider"
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Sampling temperature"
    )
    max_tokens: int = Field(
        default=1000,
        gt=0,
        description="Maximum tokens in a model response"
    )
    request_timeout: int = Field(
        default=30,
        gt=0,
        description="Request timeout in seconds"
    )


class ApplicationConfig(BaseSettings):
    """Main application configuration settings."""

    model_config = SettingsConfigDict(env_prefix="APP_", case_sensitive=False, extra="ignore")

    env: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level"
    )
    service_name: str = Field(
        default="programming-mentor",
        description="Service name reported to logfire"
    )

    # Feature flags
    enable_llm_analysis: bool = Field(
        default=True,
        description="Analyse conversations with the LLM collaborator"
    )
    enable_file_logging: bool = Field(
        default=False,
        description="Also write logs to files under log_dir"
    )

    # Log files
    log_dir: Path = Field(
        default=Path("./logs"),
        description="Logs directory path"
    )
    log_file: str = Field(
        default="combined.log",
        description="File receiving every log record"
    )
    error_log_file: str = Field(
        default="error.log",
        description="File receiving ERROR records and above"
    )

    @field_validator("log_dir", mode="before")
    @classmethod
    def coerce_path(cls, v: Union[str, Path]) -> Path:
        """Accept string paths from the environment."""
        return Path(v)


@dataclass
class RuntimeConfig:
    """Runtime configuration container combining all config sections."""

    neo4j: Neo4jConfig = field(default_factory=Neo4jConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    app: ApplicationConfig = field(default_factory=ApplicationConfig)

    def reload(self):
        """Reload configuration from environment variables."""
        self.neo4j = Neo4jConfig()
        self.llm = LLMConfig()
        self.app = ApplicationConfig()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app.env == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app.env == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.app.env == Environment.TESTING

    def get_neo4j_driver_config(self) -> Dict[str, Any]:
        """Get keyword arguments for ``AsyncGraphDatabase.driver``."""
        return {
            "uri": self.neo4j.uri,
            "auth": (self.neo4j.user, self.neo4j.password.get_secret_value()),
            "max_connection_lifetime": self.neo4j.max_connection_lifetime,
            "max_connection_pool_size": self.neo4j.max_connection_pool_size,
            "connection_acquisition_timeout": self.neo4j.connection_acquisition_timeout,
        }

    def validate_neo4j_connection(self) -> bool:
        """Validate Neo4j configuration is complete."""
        return bool(
            self.neo4j.uri and
            self.neo4j.user and
            self.neo4j.password.get_secret_value()
        )

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        config = {
            "environment": self.app.env.value,
            "debug": self.app.debug,
            "log_level": self.app.log_level.value,
            "features": {
                "llm_analysis": self.app.enable_llm_analysis,
                "file_logging": self.app.enable_file_logging,
            },
            "neo4j": {
                "uri": self.neo4j.uri,
                "user": self.neo4j.user,
                "database": self.neo4j.database,
                "password": SECRET_MASK,
            },
            "llm": {
                "provider": self.llm.provider.value,
                "model_name": self.llm.model_name,
                "temperature": self.llm.temperature,
                "max_tokens": self.llm.max_tokens,
                "api_key": SECRET_MASK if self.llm.api_key else None,
            },
        }

        if include_secrets:
            config["neo4j"]["password"] = self.neo4j.password.get_secret_value()
            if self.llm.api_key:
                config["llm"]["api_key"] = self.llm.api_key.get_secret_value()

        return config


# Global configuration instance, created on first use
_config: Optional[RuntimeConfig] = None


def get_config() -> RuntimeConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = RuntimeConfig()
    return _config


def reload_config() -> RuntimeConfig:
    """Reload configuration from environment."""
    config = get_config()
    config.reload()
    return config


def get_log_path(subpath: str = "", config: Optional[RuntimeConfig] = None) -> Path:
    """Get path within log directory."""
    config = config or get_config()
    path = config.app.log_dir / subpath
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def configure_logging(config: Optional[RuntimeConfig] = None) -> None:
    """Configure stdlib logging and logfire from the application settings.

    Console output goes to stderr so that a stdio protocol transport keeps
    stdout to itself. When file logging is enabled every record is written to
    ``log_file`` and errors additionally to ``error_log_file``.
    """
    config = config or get_config()
    level = logging.DEBUG if config.app.debug else getattr(logging, config.app.log_level.value)

    handlers = [logging.StreamHandler(sys.stderr)]
    if config.app.enable_file_logging:
        handlers.append(logging.FileHandler(get_log_path(config.app.log_file, config)))
        error_handler = logging.FileHandler(get_log_path(config.app.error_log_file, config))
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)

    logfire.configure(
        send_to_logfire='if-token-present',
        service_name=config.app.service_name,
        environment=config.app.env.value,
    )


def log_config_values(config: Optional[RuntimeConfig] = None) -> None:
    """Log the active configuration with secrets masked."""
    config = config or get_config()
    logger = logging.getLogger(__name__)
    values = config.to_dict(include_secrets=False)
    logger.info(f"Environment: {values['environment']} (debug={values['debug']})")
    logger.info(f"Neo4j: {values['neo4j']['uri']} as {values['neo4j']['user']} "
                f"(database={values['neo4j']['database']})")
    logger.info(f"LLM: {values['llm']['provider']} / {values['llm']['model_name']}")
    logger.debug(f"Full configuration: {values}")
