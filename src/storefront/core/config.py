"""Configuration management for the storefront gateway and backend services."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings shared by the gateway and the backend services."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Gateway server
    HOST: str = Field(default="127.0.0.1", description="Gateway host")
    PORT: int = Field(default=8080, description="Gateway port")
    DEBUG: bool = Field(default=False, description="Debug mode (tracebacks in 500 responses)")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    # Dispatch table
    ROUTES_FILE: str = Field(
        default="config/routes.yaml",
        description="Path to the YAML file listing mount points and their backends"
    )
    INVENTORY_SERVICE_URL: str = Field(
        default="http://localhost:8081",
        description="Base URL of the inventory backend (used when no routes file exists)"
    )
    ORDERS_SERVICE_URL: str = Field(
        default="http://localhost:8082",
        description="Base URL of the orders backend (used when no routes file exists)"
    )

    # Outbound transport
    PROXY_CONNECT_TIMEOUT: float = Field(default=2.0, gt=0, le=60, description="Backend connect timeout in seconds")
    PROXY_READ_TIMEOUT: float = Field(default=5.0, gt=0, le=300, description="Backend read timeout in seconds")
    PROXY_WRITE_TIMEOUT: float = Field(default=5.0, gt=0, le=300, description="Backend write timeout in seconds")
    PROXY_POOL_TIMEOUT: float = Field(default=5.0, gt=0, le=300, description="Wait for a pooled connection in seconds")
    PROXY_MAX_CONNECTIONS: int = Field(default=100, ge=1, le=10000, description="Max concurrent backend connections")
    PROXY_MAX_KEEPALIVE_CONNECTIONS: int = Field(default=20, ge=0, le=10000, description="Max idle keep-alive connections")
    STRIP_HOP_BY_HOP_HEADERS: bool = Field(
        default=False,
        description="Drop RFC 7230 hop-by-hop headers instead of forwarding them verbatim"
    )

    # Backend services
    INVENTORY_HOST: str = Field(default="127.0.0.1", description="Inventory service host")
    INVENTORY_PORT: int = Field(default=8081, description="Inventory service port")
    ORDERS_HOST: str = Field(default="127.0.0.1", description="Orders service host")
    ORDERS_PORT: int = Field(default=8082, description="Orders service port")

    # Document store
    DOCUMENT_STORE_BACKEND: str = Field(
        default="mongo", pattern="^(mongo|memory)$", description="Document store backend"
    )
    MONGODB_URL: str = Field(default="mongodb://localhost:27017", description="MongoDB connection URL")
    MONGODB_DATABASE: str = Field(default="ecommerce", description="MongoDB database name")
    MONGODB_TIMEOUT_MS: int = Field(default=10000, ge=100, description="MongoDB server selection timeout")

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @field_validator('INVENTORY_SERVICE_URL', 'ORDERS_SERVICE_URL')
    @classmethod
    def validate_service_url(cls, v):
        """Backend URLs must be absolute http(s) URLs without a trailing slash"""
        if not (v.startswith('http://') or v.startswith('https://')):
            raise ValueError("Service URL must start with http:// or https://")
        return v.rstrip('/')


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (for dependency injection)"""
    return settings
