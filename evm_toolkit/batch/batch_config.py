"""
Configuration for the batch sender and the explorer client.
Provides policy classes, validation, and loading from JSON or YAML files.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict

import yaml
from loguru import logger

from evm_toolkit.config import EXPLORER_MAX_CONCURRENT, EXPLORER_RATE_PER_SECOND, NETWORK_NAME
from evm_toolkit.utils.request_queue import SchedulerPolicy
from evm_toolkit.utils.retry import RetryPolicy


@dataclass(frozen=True)
class BatchPolicy:
    """Execution parameters for one batch transfer run."""
    batch_size: int = 10
    gas_multiplier: float = 1.2
    max_retries: int = 3               # attempts per transfer
    retry_delay: float = 2.0           # seconds, first backoff step
    max_retry_delay: float = 10.0
    delay_between_transfers: float = 3.0
    delay_between_batches: float = 15.0
    rate_limit_cooldown: float = 60.0
    confirmation_timeout: float = 120.0
    dry_run: bool = False
    network: str = NETWORK_NAME

    def __post_init__(self):
        """Validate batch configuration."""
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        if self.gas_multiplier < 1.0:
            raise ValueError("gas_multiplier must be at least 1.0")

        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        for name in ("retry_delay", "max_retry_delay", "delay_between_transfers",
                     "delay_between_batches", "rate_limit_cooldown"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

        if self.confirmation_timeout <= 0:
            raise ValueError("confirmation_timeout must be positive")

    def transfer_retry_policy(self) -> RetryPolicy:
        """Retry policy applied to each individual transfer."""
        return RetryPolicy(
            max_attempts=self.max_retries,
            base_delay=self.retry_delay,
            max_delay=max(self.retry_delay, self.max_retry_delay),
            backoff_multiplier=2.0
        )


@dataclass(frozen=True)
class ToolkitConfiguration:
    """All policies of one run."""
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    scheduler: SchedulerPolicy = field(default_factory=lambda: SchedulerPolicy(
        max_concurrent=EXPLORER_MAX_CONCURRENT,
        rate_per_second=EXPLORER_RATE_PER_SECOND
    ))
    batch: BatchPolicy = field(default_factory=BatchPolicy)


def _build(policy_cls, data: Dict[str, Any]):
    known = {f.name for f in fields(policy_cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {policy_cls.__name__} keys: {', '.join(sorted(unknown))}")
    return policy_cls(**data)


class ConfigurationManager:
    """Manages configuration loading, validation, and saving."""

    def load_config(self, config_path: str) -> ToolkitConfiguration:
        """
        Load configuration from a JSON or YAML file.

        The file may contain any of the sections ``retry``, ``scheduler`` and
        ``batch``; missing sections and keys keep their defaults.
        """
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, "r") as f:
                if config_file.suffix.lower() in (".yaml", ".yml"):
                    config_data = yaml.safe_load(f) or {}
                else:
                    config_data = json.load(f)

            if not isinstance(config_data, dict):
                raise ValueError("configuration root must be a mapping")

            unknown = set(config_data) - {"retry", "scheduler", "batch"}
            if unknown:
                raise ValueError(f"Unknown sections: {', '.join(sorted(unknown))}")

            defaults = ToolkitConfiguration()
            return ToolkitConfiguration(
                retry=_build(RetryPolicy, config_data["retry"]) if "retry" in config_data else defaults.retry,
                scheduler=_build(SchedulerPolicy, config_data["scheduler"]) if "scheduler" in config_data else defaults.scheduler,
                batch=_build(BatchPolicy, config_data["batch"]) if "batch" in config_data else defaults.batch
            )

        except Exception as e:
            logger.error(f"Failed to load configuration: {str(e)}")
            raise ValueError(f"Invalid configuration file: {str(e)}") from e

    def save_config(self, config: ToolkitConfiguration, config_path: str) -> None:
        """Save configuration to a JSON or YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        config_dict = asdict(config)
        with open(config_file, "w") as f:
            if config_file.suffix.lower() in (".yaml", ".yml"):
                yaml.safe_dump(config_dict, f, default_flow_style=False)
            else:
                json.dump(config_dict, f, indent=2)

        logger.info(f"Configuration saved to: {config_path}")
