"""
Persisted model contract: metadata schema and directory layout.

Directory layout::

    <dir>/metadata.json        ModelMetadata, written last
    <dir>/encoders.json        [{bucketCount, hashSeed, featureName}, ...]
    <dir>/model.json           single tree artifact (binary / multi / regression)
    <dir>/models/<class>.json  one tree artifact per class (one-vs-rest)

``metadata.json`` alone is enough to rebuild the feature layout: the declared
feature lists fix the concatenation order and each ``EncoderMetadata`` fixes
one encoder's hash function. JSON keys are camelCase; Python attributes are
snake_case (pydantic aliases bridge the two).

Every file is written through ``atomic_write_json`` (temp file in the same
directory, then ``os.replace``), and ``metadata.json`` is written after all
artifacts, so a directory with a readable ``metadata.json`` is complete.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from hashboost.encoding.hash_encoder import HashEncoderConfig

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
ENCODERS_FILE = "encoders.json"
MODEL_FILE = "model.json"
MODELS_DIR = "models"

METADATA_VERSION = "1.0.0"

TaskType = Literal["classification", "regression"]

_camel = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ── Schema ────────────────────────────────────────────────────────────────────


class EncoderMetadata(BaseModel):
    """Persisted encoder config plus the cardinality seen during training."""

    model_config = _camel

    feature_name: str
    bucket_count: int
    hash_seed: int
    unique_count: int

    def encoder_config(self) -> HashEncoderConfig:
        return HashEncoderConfig(
            bucket_count=self.bucket_count,
            hash_seed=self.hash_seed,
            feature_name=self.feature_name,
        )


class TargetStats(BaseModel):
    model_config = _camel

    min: float
    max: float
    mean: float
    std: float


class TargetNormalization(BaseModel):
    """Bounds for mapping regression targets to ``[0, 1]`` and back."""

    model_config = _camel

    min: float
    max: float

    def normalize(self, value: float) -> float:
        span = self.max - self.min
        return 0.5 if span == 0 else (value - self.min) / span

    def denormalize(self, value: float) -> float:
        span = self.max - self.min
        return value if span == 0 else value * span + self.min


class ModelMetrics(BaseModel):
    """Evaluation metrics recorded at training time.

    Classification fills accuracy / roc_auc / confusion_matrix / per-class
    precision, recall and f1; regression fills mse / rmse / mae / r2 / mape
    / median_ae. Cross-validation adds per-fold scores (accuracy or RMSE) and
    ``cross_validation_failures`` (fold index -> error message) for folds that
    could not be trained.
    """

    model_config = _camel

    task_type: TaskType
    accuracy: Optional[float] = None
    roc_auc: Optional[float] = None
    confusion_matrix: Optional[list[list[int]]] = None
    precision: Optional[list[float]] = None
    recall: Optional[list[float]] = None
    f1_score: Optional[list[float]] = None
    mse: Optional[float] = None
    rmse: Optional[float] = None
    mae: Optional[float] = None
    r2: Optional[float] = None
    mape: Optional[float] = None
    median_ae: Optional[float] = None
    cross_validation_scores: Optional[list[float]] = None
    cross_validation_failures: Optional[dict[int, str]] = None


class ModelMetadata(BaseModel):
    """Everything ``Model.load`` needs besides the tree artifacts."""

    model_config = _camel

    version: str = METADATA_VERSION
    created_at: str
    categorical_features: list[str]
    numeric_features: list[str]
    target: str
    task_type: TaskType
    classes: Optional[list[str]] = None
    num_classes: Optional[int] = None
    booster_params: dict[str, Any] = Field(default_factory=dict, alias="xgbParams")
    encoders: list[EncoderMetadata]
    metrics: ModelMetrics
    is_one_vs_rest: bool = False
    target_stats: Optional[TargetStats] = None
    target_normalization: Optional[TargetNormalization] = None

    @model_validator(mode="after")
    def validate_contract(self) -> "ModelMetadata":
        if self.task_type == "classification" and not self.classes:
            raise ValueError("Classification metadata must list its classes.")
        names = [e.feature_name for e in self.encoders]
        if names != self.categorical_features:
            raise ValueError(
                f"Encoder order {names} does not match categorical features "
                f"{self.categorical_features}."
            )
        if self.task_type == "regression" and self.target_normalization is None:
            raise ValueError("Regression metadata must carry targetNormalization.")
        return self


# ── File helpers ──────────────────────────────────────────────────────────────

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def class_artifact_path(directory: Path, label: str) -> Path:
    """Path of the one-vs-rest artifact for ``label`` under ``directory/models``.

    Labels that are not plain file names are sanitised and suffixed with a
    short digest of the original label, so distinct labels never share a file.
    """
    safe = _UNSAFE_CHARS.sub("_", label)
    if safe != label or not safe or safe.startswith("."):
        digest = hashlib.sha1(label.encode("utf-8")).hexdigest()[:8]
        safe = f"{safe.lstrip('.')}-{digest}"
    return Path(directory) / MODELS_DIR / f"{safe}.json"


def atomic_write_json(path: Path, payload: Any) -> None:
    """Write ``payload`` as indented JSON via a temp file + ``os.replace``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", delete=False, dir=path.parent, prefix=".tmp_", suffix=".json"
    ) as tmp:
        try:
            json.dump(payload, tmp, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
        except BaseException:
            tmp.close()
            os.unlink(tmp.name)
            raise
        tmp_name = tmp.name
    os.replace(tmp_name, path)
    logger.debug("Wrote %s", path)


def read_json(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def write_metadata(directory: Path, metadata: ModelMetadata) -> Path:
    path = Path(directory) / METADATA_FILE
    atomic_write_json(path, metadata.model_dump(mode="json", by_alias=True))
    return path


def read_metadata(directory: Path) -> ModelMetadata:
    """Parse and validate ``<directory>/metadata.json``."""
    return ModelMetadata.model_validate(read_json(Path(directory) / METADATA_FILE))


def write_encoders(directory: Path, configs: list[HashEncoderConfig]) -> Path:
    path = Path(directory) / ENCODERS_FILE
    atomic_write_json(path, [c.model_dump(by_alias=True) for c in configs])
    return path


def read_encoders(directory: Path) -> list[HashEncoderConfig]:
    return [
        HashEncoderConfig.model_validate(item)
        for item in read_json(Path(directory) / ENCODERS_FILE)
    ]
