"""
Configuration management for calibration runs.

Supports loading from:
- Python dictionaries (snake_case keys or the camelCase property names
  ``numberOfPaths``, ``maxIterations``, ... used by older calibration code)
- YAML/JSON config files
- Environment variables (``QC_*``)
"""

import json
import logging
import math
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import yaml

logger = logging.getLogger(__name__)

Bound = Union[float, Sequence[float]]

_ALIASES = {
    "numberOfPaths": "number_of_paths",
    "maxIterations": "max_iterations",
    "parameterStep": "parameter_step",
    "concurrencyDegree": "concurrency_degree",
    "evaluationTime": "evaluation_time",
    "optimizerThreads": "optimizer_threads",
    "lowerBound": "lower_bound",
    "upperBound": "upper_bound",
}


@dataclass
class CalibrationSettings:
    """
    Calibration settings. ``None`` means "use the default".

    Attributes:
        number_of_paths: Monte-Carlo path count of the stochastic driver
        seed: Seed of the stochastic driver
        max_iterations: Optimizer iteration limit
        parameter_step: Finite-difference step (scalar or per parameter)
        accuracy: Target RMS residual
        concurrency_degree: Instrument worker count, 0 = synchronous
        evaluation_time: Time at which products are valued
        optimizer_threads: Workers evaluating Jacobian columns
        lower_bound: Lower parameter bound (scalar or per parameter)
        upper_bound: Upper parameter bound (scalar or per parameter)
    """

    number_of_paths: Optional[int] = None
    seed: Optional[int] = None
    max_iterations: Optional[int] = None
    parameter_step: Optional[Bound] = None
    accuracy: Optional[float] = None
    concurrency_degree: Optional[int] = None
    evaluation_time: Optional[float] = None
    optimizer_threads: Optional[int] = None
    lower_bound: Optional[Bound] = None
    upper_bound: Optional[Bound] = None

    def __post_init__(self):
        """Validate settings."""
        if self.number_of_paths is not None and self.number_of_paths <= 0:
            raise ValueError("number_of_paths must be positive")
        if self.max_iterations is not None and self.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")
        if self.accuracy is not None and not self.accuracy >= 0:
            raise ValueError("accuracy must be non-negative")
        if self.concurrency_degree is not None and self.concurrency_degree < 0:
            raise ValueError("concurrency_degree must be non-negative")
        if self.optimizer_threads is not None and self.optimizer_threads < 1:
            raise ValueError("optimizer_threads must be at least 1")
        if isinstance(self.parameter_step, (int, float)) and not self.parameter_step > 0:
            raise ValueError("parameter_step must be positive")
        if self.evaluation_time is not None and not math.isfinite(self.evaluation_time):
            raise ValueError("evaluation_time must be finite")

    def merged_over(self, defaults: "CalibrationSettings") -> "CalibrationSettings":
        """Return settings where every unset field is taken from ``defaults``."""
        values = {
            f.name: getattr(defaults, f.name)
            for f in fields(self)
            if getattr(self, f.name) is None
        }
        return replace(self, **values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalibrationSettings":
        """
        Create settings from a dictionary.

        Raises:
            ValueError: On unknown keys
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown calibration setting: {key}")
            values[name] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting unset fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}


MONTE_CARLO_DEFAULTS = CalibrationSettings(
    number_of_paths=2000,
    seed=31415,
    max_iterations=400,
    parameter_step=1e-4,
    accuracy=1e-7,
    concurrency_degree=0,
    evaluation_time=0.0,
    optimizer_threads=2,
    lower_bound=0.0,
    upper_bound=math.inf,
)

ANALYTIC_DEFAULTS = replace(
    MONTE_CARLO_DEFAULTS,
    max_iterations=600,
    accuracy=1e-8,
)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    json_output: bool = False
    file: Optional[str] = None
    max_bytes: int = 10_000_000  # 10MB
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration container."""
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metrics_enabled: bool = False
    metrics_port: int = 9090

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        config = cls()

        if "calibration" in data:
            config.calibration = CalibrationSettings.from_dict(data["calibration"])
        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])
        if "metrics_enabled" in data:
            config.metrics_enabled = bool(data["metrics_enabled"])
        if "metrics_port" in data:
            config.metrics_port = int(data["metrics_port"])

        return config

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Config":
        """Load config from JSON or YAML file."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> "Config":
        """Load config from environment variables."""
        config = cls()
        calibration: Dict[str, Any] = {}

        if paths := os.getenv("QC_NUMBER_OF_PATHS"):
            calibration["number_of_paths"] = int(paths)
        if seed := os.getenv("QC_SEED"):
            calibration["seed"] = int(seed)
        if max_iter := os.getenv("QC_MAX_ITERATIONS"):
            calibration["max_iterations"] = int(max_iter)
        if step := os.getenv("QC_PARAMETER_STEP"):
            calibration["parameter_step"] = float(step)
        if accuracy := os.getenv("QC_ACCURACY"):
            calibration["accuracy"] = float(accuracy)
        if workers := os.getenv("QC_CONCURRENCY_DEGREE"):
            calibration["concurrency_degree"] = int(workers)
        config.calibration = CalibrationSettings(**calibration)

        if log_level := os.getenv("QC_LOG_LEVEL"):
            config.logging.level = log_level
        if log_file := os.getenv("QC_LOG_FILE"):
            config.logging.file = log_file
        if os.getenv("QC_METRICS_ENABLED", "").lower() in ("1", "true", "yes"):
            config.metrics_enabled = True

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "calibration": self.calibration.to_dict(),
            "logging": asdict(self.logging),
            "metrics_enabled": self.metrics_enabled,
            "metrics_port": self.metrics_port,
        }

    def save(self, path: Union[str, Path]) -> None:
        """Save config to JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(
    config_file: Optional[str] = None,
    use_env: bool = True
) -> Config:
    """
    Load configuration with precedence:
    1. Environment variables (if use_env=True)
    2. Config file (if provided)
    3. Defaults
    """
    config = Config()

    if config_file:
        try:
            config = Config.from_file(config_file)
            logger.info(f"Loaded config from {config_file}")
        except FileNotFoundError:
            logger.warning(f"Config file not found: {config_file}, using defaults")

    if use_env:
        env_config = Config.from_env()
        config.calibration = env_config.calibration.merged_over(config.calibration)
        if os.getenv("QC_LOG_LEVEL"):
            config.logging.level = env_config.logging.level
        if os.getenv("QC_LOG_FILE"):
            config.logging.file = env_config.logging.file
        if os.getenv("QC_METRICS_ENABLED"):
            config.metrics_enabled = env_config.metrics_enabled

    return config


def setup_logging(config: LoggingConfig) -> None:
    """Configure package logging based on config."""
    from .monitoring.logging import configure_logging

    configure_logging(
        level=config.level,
        json_output=config.json_output,
        file_output=config.file,
        max_bytes=config.max_bytes,
        backup_count=config.backup_count,
    )
