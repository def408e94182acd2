"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local env overrides (gitignored)
  4. Environment variables        — ``HASHBOOST_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Library classes (``Trainer``, ``FeatureAnalyzer``, ``HashEncoder``) accept
the individual sub-configs below, so they can be used without any TOML file;
only the CLI goes through ``load_config()``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class EncodingConfig(BaseModel):
    """Hash-encoder sizing policy and data-quality warning thresholds.

    The bucket sizing rule is ``k**2`` while ``k <= square_threshold`` and
    ``linear_multiplier * k`` beyond it. Changing any of these values only
    affects models trained afterwards: a trained model persists its concrete
    bucket counts and seeds, never the policy.
    """

    model_config = ConfigDict(frozen=True)

    hash_seed: int = 42
    square_threshold: int = 1000
    linear_multiplier: int = 20
    max_bucket_warning: int = 1_000_000
    null_rate_warning: float = 0.10
    high_cardinality_warning: int = 10_000

    @field_validator("square_threshold", "linear_multiplier")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Sizing constants must be >= 1, got {v}.")
        return v

    @field_validator("null_rate_warning")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"null_rate_warning must be in [0.0, 1.0], got {v}.")
        return v


class BoosterConfig(BaseModel):
    """Gradient-boosted tree hyperparameters (XGBoost-style names).

    ``objective`` left as ``None`` means "pick the task default" — the
    trainer resolves it to ``binary:logistic``, ``multi:softprob`` or
    ``reg:squarederror``. Any other ``None`` field falls back to the
    task-specific defaults in ``hashboost.ml.booster``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    objective: Optional[str] = None
    eta: Optional[float] = None
    max_depth: Optional[int] = None
    num_boost_round: Optional[int] = None
    min_child_weight: Optional[float] = None
    min_child_samples: Optional[int] = None
    gamma: Optional[float] = None
    subsample: Optional[float] = None
    colsample_bytree: Optional[float] = None
    alpha: Optional[float] = None
    lambda_: Optional[float] = Field(default=None, alias="lambda")
    seed: Optional[int] = None
    nthread: Optional[int] = None
    verbosity: Optional[int] = None

    @field_validator("eta")
    @classmethod
    def validate_eta(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0.0:
            raise ValueError(f"eta must be > 0, got {v}.")
        return v

    @field_validator("subsample", "colsample_bytree")
    @classmethod
    def validate_fraction(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not 0.0 < v <= 1.0:
            raise ValueError(f"Sampling ratios must be in (0.0, 1.0], got {v}.")
        return v

    @field_validator("max_depth", "num_boost_round", "min_child_samples")
    @classmethod
    def validate_positive_int(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError(f"Value must be >= 1, got {v}.")
        return v


class TrainingConfig(BaseModel):
    """Per-run training options: split, shuffling, cross-validation."""

    model_config = ConfigDict(frozen=True)

    test_ratio: float = 0.2
    shuffle: bool = True
    seed: int = 42
    use_cross_validation: bool = False
    n_folds: int = 5
    parallel_workers: int = 1

    @field_validator("test_ratio")
    @classmethod
    def validate_test_ratio(cls, v: float) -> float:
        if not 0.0 <= v < 1.0:
            raise ValueError(f"test_ratio must be in [0.0, 1.0), got {v}.")
        return v

    @field_validator("n_folds")
    @classmethod
    def validate_n_folds(cls, v: int) -> int:
        if v < 2:
            raise ValueError(f"n_folds must be >= 2, got {v}.")
        return v

    @field_validator("parallel_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"parallel_workers must be >= 1, got {v}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: Optional[str] = None
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth for the CLI."""

    model_config = ConfigDict(frozen=True)

    encoding: EncodingConfig = EncodingConfig()
    booster: BoosterConfig = BoosterConfig()
    training: TrainingConfig = TrainingConfig()
    logging: LoggingConfig = LoggingConfig()
    model_dir: str = "models"
    debug: bool = False

    @model_validator(mode="after")
    def validate_model_dir(self) -> "AppConfig":
        if not self.model_dir.strip():
            raise ValueError("model_dir must not be empty.")
        return self


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``; when that default file is
            absent the built-in defaults are used.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If an explicit ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    raw: dict[str, Any] = {}
    if config_path is None:
        default_path = root / "config" / "default.toml"
        if default_path.exists():
            config_path = default_path
    else:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

    if config_path is not None:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)

        local_config_path = config_path.parent / "local.toml"
        if local_config_path.exists():
            with open(local_config_path, "rb") as f:
                local_raw: dict[str, Any] = tomllib.load(f)
            raw = _deep_merge(raw, local_raw)

    # 3. Apply HASHBOOST_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply HASHBOOST_* env vars to the raw config dict.

    Supported overrides:
      HASHBOOST_LOG_LEVEL   → raw["logging"]["level"]
      HASHBOOST_MODEL_DIR   → raw["model_dir"]
      HASHBOOST_DEBUG       → raw["debug"]
    """
    if log_level := os.environ.get("HASHBOOST_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if model_dir := os.environ.get("HASHBOOST_MODEL_DIR"):
        raw["model_dir"] = model_dir

    if debug := os.environ.get("HASHBOOST_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        encoding=EncodingConfig(**raw.get("encoding", {})),
        booster=BoosterConfig(**raw.get("booster", {})),
        training=TrainingConfig(**raw.get("training", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        model_dir=raw.get("model_dir", project.get("model_dir", "models")),
        debug=raw.get("debug", project.get("debug", False)),
    )
