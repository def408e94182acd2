"""
Inference-side model: rebuilt from a saved directory, no training data needed.

``Model.load(directory)`` reads ``metadata.json``, rebuilds one
``HashEncoder`` per persisted ``EncoderMetadata`` and the same
``FeatureLayout`` the trainer used, then loads either ``model.json`` or the
one-vs-rest set under ``models/``. Since the layout is rebuilt from the
declared feature lists and exact encoder configs, ``Model.transform`` on a
training record returns the vector the trainer fitted on.

Inference is lenient where training was strict: a record missing a
categorical feature still gets a full-length vector (that feature's block is
all zero) and a warning is logged.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

import numpy as np
import pydantic

from hashboost.encoding.hash_encoder import HashEncoder
from hashboost.encoding.layout import FeatureLayout, RecordValidation
from hashboost.exceptions import (
    ArtifactMissing,
    MetadataMissing,
    ModelNotFound,
    ValidationError,
)
from hashboost.ml.booster import GradientBoostedTrees
from hashboost.ml.inference import predict_matrix
from hashboost.ml.metadata import (
    ENCODERS_FILE,
    METADATA_FILE,
    MODEL_FILE,
    MODELS_DIR,
    ModelMetadata,
    ModelMetrics,
    TargetStats,
    class_artifact_path,
    read_encoders,
    read_json,
    read_metadata,
)
from hashboost.ml.results import BatchPredictionResult, PredictionResult, summarise

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]


class Model:
    """A trained model ready for inference.

    Normally obtained through ``Model.load``; the constructor is for callers
    that already hold the metadata and boosters.

    Args:
        metadata:   Validated ``ModelMetadata``.
        model:      Single booster (binary / native multi-class / regression).
        ovr_models: Label -> binary booster, when ``metadata.is_one_vs_rest``.

    Raises:
        ValidationError: The boosters supplied do not match the metadata.
    """

    def __init__(
        self,
        metadata: ModelMetadata,
        model: Optional[GradientBoostedTrees] = None,
        ovr_models: Optional[Mapping[str, GradientBoostedTrees]] = None,
    ) -> None:
        if metadata.is_one_vs_rest:
            missing = [c for c in metadata.classes or [] if c not in (ovr_models or {})]
            if missing:
                raise ValidationError(f"No one-vs-rest model for class(es): {missing}")
        elif model is None:
            raise ValidationError("A single-model Model needs its booster")

        self._metadata = metadata
        self._model = model
        self._ovr_models = MappingProxyType(dict(ovr_models or {}))
        self._classes = tuple(metadata.classes or ())
        self._layout = FeatureLayout(
            metadata.categorical_features,
            metadata.numeric_features,
            {
                e.feature_name: HashEncoder(e.bucket_count, e.hash_seed, e.feature_name)
                for e in metadata.encoders
            },
        )

    # ── Loading ───────────────────────────────────────────────────────────────

    @classmethod
    def load(cls, directory: Path | str) -> "Model":
        """Load a model directory written by ``Trainer.save``.

        Raises:
            ModelNotFound:   ``directory`` does not exist.
            MetadataMissing: ``metadata.json`` is absent.
            ArtifactMissing: ``model.json``, ``models/`` or a per-class
                             artifact is absent.
            ValidationError: Metadata fails validation, or ``encoders.json``
                             disagrees with it.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise ModelNotFound(f"Model directory not found: {directory}")
        if not (directory / METADATA_FILE).exists():
            raise MetadataMissing(f"Metadata file not found: {directory / METADATA_FILE}")

        try:
            metadata = read_metadata(directory)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid {METADATA_FILE} in {directory}: {exc}") from exc

        if (directory / ENCODERS_FILE).exists():
            persisted = read_encoders(directory)
            expected = [e.encoder_config() for e in metadata.encoders]
            if persisted != expected:
                raise ValidationError(
                    f"{ENCODERS_FILE} does not match {METADATA_FILE} in {directory}"
                )

        model: Optional[GradientBoostedTrees] = None
        ovr_models: dict[str, GradientBoostedTrees] = {}
        if metadata.is_one_vs_rest:
            if not (directory / MODELS_DIR).is_dir():
                raise ArtifactMissing(f"One-vs-rest models directory not found: {directory / MODELS_DIR}")
            for label in metadata.classes:
                path = class_artifact_path(directory, label)
                if not path.exists():
                    raise ArtifactMissing(f"Model artifact for class {label!r} not found: {path}")
                ovr_models[label] = GradientBoostedTrees.from_json(read_json(path))
        else:
            path = directory / MODEL_FILE
            if not path.exists():
                raise ArtifactMissing(f"Model artifact not found: {path}")
            model = GradientBoostedTrees.from_json(read_json(path))

        inst = cls(metadata, model=model, ovr_models=ovr_models)
        logger.info("Model loaded: %r", inst)
        return inst

    # ── Transformation ────────────────────────────────────────────────────────

    def transform(self, record: Record) -> np.ndarray:
        """Feature vector for one record, in the trained layout."""
        return self._layout.transform(record, strict=False)

    def transform_batch(self, records: Sequence[Record]) -> np.ndarray:
        return self._layout.transform_batch(records, strict=False)

    def validate_record(self, record: Record) -> RecordValidation:
        """Pre-flight check: declared features missing from / extra in ``record``."""
        return self._layout.validate_record(record)

    # ── Prediction ────────────────────────────────────────────────────────────

    def _predict_records(self, records: Sequence[Record]) -> list[PredictionResult]:
        return predict_matrix(
            self.transform_batch(records),
            self.task_type,
            classes=self._classes,
            model=self._model,
            ovr_models=self._ovr_models,
            normalization=self._metadata.target_normalization,
        )

    def _require_task(self, task_type: str, operation: str) -> None:
        if self.task_type != task_type:
            raise ValidationError(
                f"{operation}() is only available for {task_type} models "
                f"(this model is {self.task_type})"
            )

    def predict(self, record: Record) -> int:
        """Predicted class index into ``classes``."""
        self._require_task("classification", "predict")
        return self._predict_records([record])[0].class_index

    def predict_batch(self, records: Sequence[Record]) -> list[int]:
        self._require_task("classification", "predict_batch")
        return [p.class_index for p in self._predict_records(records)]

    def predict_value(self, record: Record) -> float:
        """Denormalised regression prediction."""
        self._require_task("regression", "predict_value")
        return self._predict_records([record])[0].value

    def predict_value_batch(self, records: Sequence[Record]) -> list[float]:
        self._require_task("regression", "predict_value_batch")
        return [p.value for p in self._predict_records(records)]

    def predict_probabilities(self, record: Record) -> list[float]:
        """Class probabilities for binary and native multi-class models.

        Raises:
            ValidationError: Regression model, or a one-vs-rest model (whose
                per-class outputs are raw scores; use ``predict_scores``).
        """
        self._require_task("classification", "predict_probabilities")
        if self.is_one_vs_rest:
            raise ValidationError(
                "One-vs-rest models produce uncalibrated scores; use predict_scores()"
            )
        return self._predict_records([record])[0].probabilities

    def predict_scores(self, record: Record) -> list[float]:
        """Raw per-class scores of a one-vs-rest model (not normalised)."""
        self._require_task("classification", "predict_scores")
        if not self.is_one_vs_rest:
            raise ValidationError("predict_scores() needs a one-vs-rest model")
        return self._predict_records([record])[0].scores

    def predict_with_probabilities(self, record: Record) -> PredictionResult:
        """Full ``PredictionResult`` for one record (any task type)."""
        return self._predict_records([record])[0]

    def predict_batch_with_probabilities(self, records: Sequence[Record]) -> BatchPredictionResult:
        """Results for many records plus confidence and distribution summaries."""
        return summarise(self.task_type, self._predict_records(records))

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def metadata(self) -> ModelMetadata:
        return self._metadata

    @property
    def task_type(self) -> str:
        return self._metadata.task_type

    @property
    def layout(self) -> FeatureLayout:
        return self._layout

    @property
    def feature_names(self) -> list[str]:
        return self._layout.feature_names()

    @property
    def feature_count(self) -> int:
        return self._layout.width

    @property
    def classes(self) -> list[str]:
        if self.task_type != "classification":
            raise ValidationError("classes are only defined for classification models")
        return list(self._classes)

    @property
    def is_one_vs_rest(self) -> bool:
        return self._metadata.is_one_vs_rest

    @property
    def training_metrics(self) -> ModelMetrics:
        return self._metadata.metrics

    @property
    def target_stats(self) -> Optional[TargetStats]:
        return self._metadata.target_stats

    @property
    def created_at(self) -> str:
        return self._metadata.created_at

    @property
    def version(self) -> str:
        return self._metadata.version

    def __repr__(self) -> str:
        extra = (
            f"classes={len(self._classes)}, one_vs_rest={self.is_one_vs_rest}"
            if self.task_type == "classification"
            else f"target={self._metadata.target}"
        )
        return (
            f"Model(task={self.task_type}, features={self.feature_count}, {extra})"
        )
