"""Service configuration loaded from a YAML (or JSON) file."""

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml


class ConfigError(Exception):
    """Raised when the configuration cannot be read or decoded."""


@dataclass
class ServerConfig:
    port: int = 0
    grpc_port: int = 0
    env: str = ""
    log_level: str = ""


@dataclass
class DatabaseConfig:
    driver: str = ""
    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    dbname: str = ""
    max_idle_conns: int = 0
    max_open_conns: int = 0
    conn_max_lifetime: int = 0


@dataclass
class RedisConfig:
    host: str = ""
    port: int = 0
    password: str = ""
    db: int = 0


@dataclass
class ContentCheckConfig:
    sensitive_words_update_interval: int = 0
    use_ml_model: bool = False
    risk_score_threshold: int = 0
    cache_ttl: int = 0
    batch_check_max_size: int = 0
    context_history_size: int = 0


@dataclass
class AIServiceConfig:
    url: str = ""
    api_key: str = ""
    timeout: int = 0


@dataclass
class NLPServiceConfig:
    enabled: bool = False
    model_path: str = ""
    server_port: int = 0
    threshold: float = 0.0
    context_size: int = 0
    use_local_llm: bool = False
    local_llm_type: str = ""
    local_llm_api: str = ""
    model_name: str = ""


@dataclass
class RuleEngineConfig:
    rule_update_interval: int = 0
    default_rules_path: str = ""


_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


def _decode_error(key: str, value: Any, target: type) -> ConfigError:
    return ConfigError(
        f"failed to unmarshal config: cannot decode {key!r} value {value!r} as {target.__name__}"
    )


def _coerce(value: Any, target: type, key: str) -> Any:
    """Convert a raw value to ``target`` with lenient, weakly typed rules."""
    if value is None:
        return target()
    if target is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            if value == "":
                return False
            if value in _TRUE_WORDS:
                return True
            if value in _FALSE_WORDS:
                return False
    elif target is int:
        if isinstance(value, (bool, int)):
            return int(value)
        if isinstance(value, float):
            return int(value)
        if isinstance(value, str):
            if value == "":
                return 0
            try:
                return int(value, 0)
            except ValueError:
                pass
    elif target is float:
        if isinstance(value, (bool, int, float)):
            return float(value)
        if isinstance(value, str):
            if value == "":
                return 0.0
            try:
                return float(value)
            except ValueError:
                pass
    elif target is str:
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return str(value)
    raise _decode_error(key, value, target)


def _lower_keys(data: Mapping[Any, Any]) -> dict[str, Any]:
    return {str(key).lower(): value for key, value in data.items()}


def _build(cls: type, data: Any, name: str) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigError(f"failed to unmarshal config: section {name!r} is not a mapping")
    values = _lower_keys(data)
    kwargs = {
        f.name: _coerce(values[f.name], f.type, f"{name}.{f.name}")
        for f in dataclasses.fields(cls)
        if f.name in values
    }
    return cls(**kwargs)


@dataclass
class Config:
    """Complete service configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    content_check: ContentCheckConfig = field(default_factory=ContentCheckConfig)
    ai_service: AIServiceConfig = field(default_factory=AIServiceConfig)
    nlp_service: NLPServiceConfig = field(default_factory=NLPServiceConfig)
    rule_engine: RuleEngineConfig = field(default_factory=RuleEngineConfig)

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Build a configuration from a parsed mapping; keys are case-insensitive."""
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigError("failed to unmarshal config: top level is not a mapping")
        values = _lower_keys(data)
        kwargs = {
            f.name: _build(f.type, values.get(f.name), f.name)
            for f in dataclasses.fields(cls)
        }
        return cls(**kwargs)


def load(config_path: str) -> Config:
    """Read and decode the configuration file at ``config_path``."""
    try:
        with open(config_path, encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc
    return Config.from_dict(data)