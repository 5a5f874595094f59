import argparse
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .utils import parse_tag_filters

logger = logging.getLogger("awsmon.config")


@dataclass
class RdsConfig:
    """RDS discovery and per-instance collector settings"""
    enabled: bool = True
    db_user: str = ""
    db_password: str = ""
    db_connect_timeout: float = 1.0
    db_query_timeout: float = 30.0
    db_scrape_interval: float = 30.0
    logs_scrape_interval: float = 30.0  # 0 disables log tailing
    filters: Dict[str, str] = field(default_factory=dict)


@dataclass
class ElasticacheConfig:
    """ElastiCache discovery and per-node collector settings"""
    enabled: bool = True
    connect_timeout: float = 1.0
    filters: Dict[str, str] = field(default_factory=dict)


@dataclass
class AgentConfig:
    """Agent configuration with defaults"""
    aws_region: str = ""
    listen_address: str = "0.0.0.0:80"
    discovery_interval: float = 60.0
    aws_connect_timeout: float = 5.0
    aws_read_timeout: float = 30.0
    aws_max_attempts: int = 5
    log_level: str = "INFO"
    log_queue_size: int = 10000
    rds: RdsConfig = field(default_factory=RdsConfig)
    elasticache: ElasticacheConfig = field(default_factory=ElasticacheConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentConfig":
        """Build a config from a parsed YAML mapping, rejecting unknown keys."""
        data = dict(data)
        try:
            rds = RdsConfig(**(data.pop("rds", None) or {}))
            elasticache = ElasticacheConfig(**(data.pop("elasticache", None) or {}))
            return cls(rds=rds, elasticache=elasticache, **data)
        except TypeError as e:
            raise ConfigError(f"invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, config_path: Path) -> "AgentConfig":
        """Load configuration from YAML file"""
        if not config_path.exists():
            logger.debug(f"Config file not found: {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"failed to load config from {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config {config_path} must be a mapping")
        logger.debug(f"Loaded config from {config_path}")
        return cls.from_dict(data)

    def override_with_env(self, environ: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        """Override config with environment variables if set"""
        env = os.environ if environ is None else environ
        self.aws_region = env.get("AWS_REGION", self.aws_region)
        self.listen_address = env.get("LISTEN_ADDRESS", self.listen_address)
        self.rds.db_user = env.get("RDS_DB_USER", self.rds.db_user)
        self.rds.db_password = env.get("RDS_DB_PASSWORD", self.rds.db_password)
        try:
            if env.get("RDS_FILTER"):
                self.rds.filters = parse_tag_filters(env["RDS_FILTER"])
            if env.get("EC_FILTER"):
                self.elasticache.filters = parse_tag_filters(env["EC_FILTER"])
        except ValueError as e:
            raise ConfigError(str(e)) from e
        return self

    def override_with_args(self, args: argparse.Namespace) -> "AgentConfig":
        """Override config with command line arguments if provided"""
        # Only override if explicitly provided - preserves config file values
        self.aws_region = args.aws_region if args.aws_region is not None else self.aws_region
        self.listen_address = args.listen_address if args.listen_address is not None else self.listen_address
        self.discovery_interval = (args.discovery_interval if args.discovery_interval is not None
                                   else self.discovery_interval)
        self.log_level = args.log_level if args.log_level is not None else self.log_level
        return self

    def validate(self) -> "AgentConfig":
        """Reject configurations the agent cannot run with."""
        if not self.aws_region:
            raise ConfigError("AWS region is required (--aws-region or AWS_REGION)")
        if self.discovery_interval <= 0:
            raise ConfigError("discovery_interval must be positive")
        if self.log_queue_size <= 0:
            raise ConfigError("log_queue_size must be positive")
        if self.rds.logs_scrape_interval < 0:
            raise ConfigError("rds.logs_scrape_interval must not be negative")
        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ConfigError(f"unknown log level: {self.log_level}")
        return self

    def redacted(self) -> Dict[str, Any]:
        """Config as a dict safe for logging (no secrets)."""
        out = {f.name: getattr(self, f.name) for f in fields(self) if f.name not in ("rds", "elasticache")}
        out["rds"] = {**self.rds.__dict__, "db_password": "***" if self.rds.db_password else ""}
        out["elasticache"] = dict(self.elasticache.__dict__)
        return out
