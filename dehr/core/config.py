"""
Configuration module for dehr.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

from ..util.config import get_config_value, load_config_file


@dataclass
class RedisConfig:
    """Connection settings for the Redis entity store"""
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "dehr:"
    socket_timeout: Optional[float] = 5.0


@dataclass
class Config:
    """Configuration for the permission core"""
    store_type: str = "memory"
    redis: RedisConfig = field(default_factory=RedisConfig)

    # REVOKED is final and re-grants are rejected when enabled.
    strict_transitions: bool = True
    max_update_attempts: int = 5

    audit_logger_type: str = "memory"
    audit_max_entries: int = 1000
    audit_file_path: str = "dehr-audit.log"

    metrics_enabled: bool = True
    metrics_namespace: str = "dehr"

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables"""
        return cls(
            store_type=get_config_value("store_type", "memory"),
            redis=RedisConfig(
                url=get_config_value("redis_url", "redis://localhost:6379/0"),
                key_prefix=get_config_value("redis_key_prefix", "dehr:"),
                socket_timeout=get_config_value("redis_socket_timeout", 5.0, float),
            ),
            strict_transitions=get_config_value("strict_transitions", True, bool),
            max_update_attempts=get_config_value("max_update_attempts", 5, int),
            audit_logger_type=get_config_value("audit_logger_type", "memory"),
            audit_max_entries=get_config_value("audit_max_entries", 1000, int),
            audit_file_path=get_config_value("audit_file_path", "dehr-audit.log"),
            metrics_enabled=get_config_value("metrics_enabled", True, bool),
            metrics_namespace=get_config_value("metrics_namespace", "dehr"),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create configuration from a mapping, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and k != "redis"}
        redis = data.get("redis") or {}
        if not isinstance(redis, dict):
            raise ValueError("redis configuration must be a mapping")
        return cls(redis=RedisConfig(**redis), **values)

    @classmethod
    def from_file(cls, file_path: str) -> "Config":
        """Create configuration from a JSON or YAML file"""
        return cls.from_dict(load_config_file(file_path))

    def validate(self) -> bool:
        """Validate the configuration"""
        if self.store_type not in ("memory", "redis"):
            raise ValueError(f"Unsupported store_type: {self.store_type}")
        if self.store_type == "redis" and not self.redis.url:
            raise ValueError("redis.url is required for the redis store")
        if self.max_update_attempts < 1:
            raise ValueError("max_update_attempts must be at least 1")
        if self.audit_logger_type not in ("memory", "file"):
            raise ValueError(f"Unsupported audit_logger_type: {self.audit_logger_type}")
        if self.audit_max_entries < 1:
            raise ValueError("audit_max_entries must be at least 1")
        if self.audit_logger_type == "file" and not self.audit_file_path:
            raise ValueError("audit_file_path is required for the file audit logger")
        if not self.metrics_namespace:
            raise ValueError("metrics_namespace is required")
        return True
