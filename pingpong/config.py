"""Configuration models using Pydantic for validation."""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
import os

DEFAULT_HTTP_PORT = 8090
DEFAULT_HTTPS_PORT = 8443


class ServerConfig(BaseModel):
    """HTTP and HTTPS listener configuration."""
    port: int = DEFAULT_HTTP_PORT
    port_tls: int = DEFAULT_HTTPS_PORT
    bind_address: str = "0.0.0.0"
    server_key: str = "certs/server.key"
    server_cert: str = "certs/server.crt"
    disable_tls: bool = False

    @field_validator('port', 'port_tls')
    @classmethod
    def validate_port(cls, v):
        if not 0 < v < 65536:
            raise ValueError(f"Port out of range: {v}")
        return v


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    server: ServerConfig = Field(default_factory=ServerConfig)


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate configuration from an optional YAML file."""
    import yaml

    raw_config = {}
    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        if not isinstance(raw_config, dict):
            raise ValueError(f"Configuration file must contain a mapping: {config_path}")

    # Apply environment variable overrides
    if env_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_level

    if env_port := os.getenv('PINGPONG_PORT'):
        raw_config.setdefault('server', {})['port'] = env_port

    if env_tls := os.getenv('PINGPONG_DISABLE_TLS'):
        raw_config.setdefault('server', {})['disable_tls'] = _env_flag(env_tls)

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
