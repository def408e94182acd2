"""
Training orchestrator: raw records -> encoded matrix -> tree model(s) -> bundle.

Lifecycle
---------
  trainer = Trainer(["color"], ["price"], "sold")
  trainer.load_raw(records)      # analyse, size encoders, fix the layout
  metrics = trainer.train()      # split, fit, evaluate, optional CV
  trainer.save("models/sold")    # artifacts, encoders.json, metadata.json

Design decisions
----------------
- Encoders and the feature layout are built once per ``load_raw`` and never
  mutated; every ``train`` builds a fresh model mapping, so nothing leaks
  from one run into the next.
- Multi-class dispatch: if the resolved objective starts with ``multi:`` the
  engine trains one softmax model; otherwise a target with more than two
  classes is trained one-vs-rest, one ``binary:logistic`` model per sorted
  label (binary relevance labels), optionally on a thread pool.
- Regression targets are trained in normalised ``[0, 1]`` space using the
  training-set min/max; ``Model`` maps predictions back.
- Shuffles are seeded (``TrainingConfig.seed``), so a run is reproducible.
- Cross-validation folds are contiguous slices of the shuffled dataset. A
  fold that fails is logged and recorded in ``cross_validation_failures``;
  the remaining folds still run.
- Training is strict about categorical features (a missing one raises);
  invalid numeric values degrade to 0 as they do at inference time.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from hashboost.config import BoosterConfig, EncodingConfig, TrainingConfig
from hashboost.encoding.analyzer import FeatureAnalysisResult, FeatureAnalyzer
from hashboost.encoding.hash_encoder import HashEncoder
from hashboost.encoding.layout import FeatureLayout, to_number
from hashboost.evaluation.metrics import (
    accuracy,
    classification_metrics,
    regression_metrics,
    regression_model_metrics,
)
from hashboost.exceptions import NotTrained, UnknownClass, ValidationError
from hashboost.ml.booster import GradientBoostedTrees, is_multiclass_objective, resolve_params
from hashboost.ml.inference import predict_matrix
from hashboost.ml.metadata import (
    MODEL_FILE,
    EncoderMetadata,
    ModelMetadata,
    ModelMetrics,
    TargetNormalization,
    TargetStats,
    atomic_write_json,
    class_artifact_path,
    write_encoders,
    write_metadata,
)
from hashboost.ml.results import PredictionResult
from hashboost.ml.splits import kfold_slices, shuffled, train_test_split

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]

TASK_TYPES = ("classification", "regression")


class Trainer:
    """Train a hashed-feature gradient-boosted tree model.

    Args:
        categorical_features: Features to hash-encode, in layout order.
        numeric_features:     Numeric features, in layout order.
        target:               Target column name.
        task_type:            ``"classification"`` or ``"regression"``.
        booster:              XGBoost-style hyper-parameters
                              (``BoosterConfig`` or dict); task defaults
                              fill the gaps.
        encoding:             Encoder sizing policy and hash seed.

    Raises:
        ValidationError: Unknown task type or empty target name.
    """

    def __init__(
        self,
        categorical_features: Sequence[str],
        numeric_features: Sequence[str] = (),
        target: str = "target",
        task_type: str = "classification",
        booster: BoosterConfig | Mapping[str, Any] | None = None,
        encoding: EncodingConfig | None = None,
    ) -> None:
        if task_type not in TASK_TYPES:
            raise ValidationError(f"task_type must be one of {TASK_TYPES}, got {task_type!r}")
        if not target:
            raise ValidationError("A target feature name is required")

        self.categorical_features = tuple(categorical_features)
        self.numeric_features = tuple(numeric_features)
        self.target = target
        self.task_type = task_type
        self.booster = booster
        self.encoding = encoding or EncodingConfig()

        # Dataset state (set by load_raw)
        self._records: tuple[Record, ...] = ()
        self._analysis: Optional[FeatureAnalysisResult] = None
        self._layout: Optional[FeatureLayout] = None
        self._classes: tuple[str, ...] = ()
        self._class_index: Mapping[str, int] = MappingProxyType({})
        self._target_stats: Optional[TargetStats] = None
        self._normalization: Optional[TargetNormalization] = None

        # Training state (set by train)
        self._reset_training_state()

    def _reset_training_state(self) -> None:
        self._params: dict[str, Any] = {}
        self._model: Optional[GradientBoostedTrees] = None
        self._ovr_models: Mapping[str, GradientBoostedTrees] = MappingProxyType({})
        self._metrics: Optional[ModelMetrics] = None
        self._trained_at = ""
        self._test_records: tuple[Record, ...] = ()
        self._last_training_records: tuple[Record, ...] = ()
        self._last_training_matrix: Optional[np.ndarray] = None

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def is_trained(self) -> bool:
        return self._metrics is not None

    @property
    def layout(self) -> FeatureLayout:
        return self._require_layout()

    @property
    def encoders(self) -> Mapping[str, HashEncoder]:
        return self._require_layout().encoders

    @property
    def analysis(self) -> Optional[FeatureAnalysisResult]:
        return self._analysis

    @property
    def classes(self) -> list[str]:
        return list(self._classes)

    @property
    def is_multi_class(self) -> bool:
        return len(self._classes) > 2

    @property
    def target_stats(self) -> Optional[TargetStats]:
        return self._target_stats

    @property
    def target_normalization(self) -> Optional[TargetNormalization]:
        return self._normalization

    @property
    def is_one_vs_rest(self) -> bool:
        """True when the last ``train()`` produced per-class binary models."""
        return bool(self._ovr_models)

    @property
    def models(self) -> Mapping[str, GradientBoostedTrees]:
        """Read-only label -> booster mapping from the last one-vs-rest run."""
        return self._ovr_models

    @property
    def model(self) -> Optional[GradientBoostedTrees]:
        return self._model

    @property
    def metrics(self) -> Optional[ModelMetrics]:
        return self._metrics

    @property
    def last_training_records(self) -> list[Record]:
        return list(self._last_training_records)

    @property
    def last_training_matrix(self) -> Optional[np.ndarray]:
        """Copy of the matrix the final model(s) were fitted on."""
        return None if self._last_training_matrix is None else self._last_training_matrix.copy()

    def uses_one_vs_rest(self, objective: Optional[str] = None) -> bool:
        """Whether training with ``objective`` dispatches to one-vs-rest."""
        if objective is None:
            objective = resolve_params(self.booster, self.task_type, len(self._classes))["objective"]
        return (
            self.task_type == "classification"
            and len(self._classes) > 2
            and not is_multiclass_objective(objective)
        )

    # ── Data loading ──────────────────────────────────────────────────────────

    def load_raw(self, data: Sequence[Record]) -> FeatureAnalysisResult:
        """Analyse ``data`` and fix encoders, layout and target handling.

        Discards any previously trained model.

        Raises:
            ValidationError: Empty data, a declared feature or the target
                missing from the first record, feature lists overlapping, or
                (regression) a target value that is not numeric.
        """
        if not data:
            raise ValidationError("Training data is empty")
        first = data[0]
        required = [*self.categorical_features, *self.numeric_features, self.target]
        missing = [name for name in required if name not in first]
        if missing:
            raise ValidationError(f"Required features missing from data: {', '.join(missing)}")

        analyzer = FeatureAnalyzer(self.encoding)
        analysis = analyzer.analyze_features(
            data,
            self.categorical_features,
            self.numeric_features,
            self.target if self.task_type == "classification" else None,
        )

        encoders = {
            name: HashEncoder(
                analysis.categorical_specs[name].bucket_count,
                self.encoding.hash_seed,
                name,
            )
            for name in self.categorical_features
        }
        layout = FeatureLayout(self.categorical_features, self.numeric_features, encoders)

        classes: tuple[str, ...] = ()
        target_stats = normalization = None
        if self.task_type == "classification":
            classes = tuple(analysis.dataset_stats.target_classes)
            if not classes:
                raise ValidationError(f"Target {self.target!r} has no non-null labels")
        else:
            target_stats = self._regression_target_stats(data)
            normalization = TargetNormalization(min=target_stats.min, max=target_stats.max)

        self._records = tuple(data)
        self._analysis = analysis
        self._layout = layout
        self._classes = classes
        self._class_index = MappingProxyType({label: i for i, label in enumerate(classes)})
        self._target_stats = target_stats
        self._normalization = normalization
        self._reset_training_state()

        logger.info(
            "Loaded %d records: layout width=%d, %s",
            len(data),
            layout.width,
            f"{len(classes)} classes" if classes else
            f"target range [{target_stats.min:g}, {target_stats.max:g}]",
        )
        return analysis

    def load_csv(self, path: Path | str, **options: Any) -> FeatureAnalysisResult:
        from hashboost.ingestion.loader import load_csv

        return self.load_raw(load_csv(path, **options))

    def load_json(self, path: Path | str) -> FeatureAnalysisResult:
        from hashboost.ingestion.loader import load_json

        return self.load_raw(load_json(path))

    def load_parquet(self, path: Path | str) -> FeatureAnalysisResult:
        from hashboost.ingestion.loader import load_parquet

        return self.load_raw(load_parquet(path))

    def _regression_target_stats(self, data: Sequence[Record]) -> TargetStats:
        values = [to_number(r.get(self.target)) for r in data]
        invalid = sum(1 for v in values if v is None)
        if invalid:
            raise ValidationError(
                f"Regression target {self.target!r} has {invalid} non-numeric value(s)"
            )
        n = len(values)
        mean = sum(values) / n
        std = math.sqrt(sum((v - mean) ** 2 for v in values) / n)
        if min(values) == max(values):
            logger.warning(
                "Regression target %s is constant (%g); normalised targets will all be 0.5",
                self.target, values[0],
            )
        return TargetStats(min=min(values), max=max(values), mean=mean, std=std)

    # ── Transformation ────────────────────────────────────────────────────────

    def transform_records(self, records: Sequence[Record]) -> np.ndarray:
        """Encode ``records`` with the training layout (strict on categoricals)."""
        return self._require_layout().transform_batch(records, strict=True)

    def transform_targets(self, records: Sequence[Record]) -> np.ndarray:
        """Class indices (classification) or normalised values (regression).

        Raises:
            UnknownClass: A label not seen by ``load_raw``.
            ValidationError: A non-numeric regression target.
        """
        self._require_layout()
        out = np.empty(len(records), dtype=np.float64)
        for i, record in enumerate(records):
            raw = record.get(self.target)
            if self.task_type == "classification":
                label = None if raw is None else str(raw)
                if label not in self._class_index:
                    raise UnknownClass(label, list(self._classes))
                out[i] = self._class_index[label]
            else:
                value = to_number(raw)
                if value is None:
                    raise ValidationError(f"Non-numeric regression target: {raw!r}")
                out[i] = self._normalization.normalize(value)
        return out

    # ── Training ──────────────────────────────────────────────────────────────

    def train(self, config: TrainingConfig | Mapping[str, Any] | None = None) -> ModelMetrics:
        """Split, fit, evaluate and (optionally) cross-validate.

        Args:
            config: ``TrainingConfig`` or dict of its fields.

        Returns:
            Metrics on the test split, plus cross-validation scores when
            enabled.

        Raises:
            ValidationError: ``load_raw`` not called, or the split leaves no
                training rows.
        """
        cfg = self._training_config(config)
        self._require_layout()

        params = resolve_params(self.booster, self.task_type, len(self._classes))
        rows = shuffled(self._records, cfg.seed) if cfg.shuffle else list(self._records)
        split = train_test_split(rows, cfg.test_ratio, shuffle=False)
        if not split.train:
            raise ValidationError(
                f"test_ratio={cfg.test_ratio} leaves no training rows out of {len(rows)}"
            )

        X_train = self.transform_records(split.train)
        y_train = self.transform_targets(split.train)

        one_vs_rest = self.uses_one_vs_rest(params["objective"])
        logger.info(
            "Training %s (%s) on %d rows, testing on %d",
            self.task_type,
            "one-vs-rest" if one_vs_rest else params["objective"],
            len(split.train), len(split.test),
        )
        model, ovr_models = self._fit(X_train, y_train, params, cfg.parallel_workers)

        # A failed fit above leaves the previous model in place.
        self._metrics = None
        self._trained_at = ""
        self._params = params
        self._model = model
        self._ovr_models = ovr_models
        self._test_records = tuple(split.test)
        self._last_training_records = tuple(split.train)
        self._last_training_matrix = X_train

        if split.test:
            metrics = self._evaluate(split.test)
        else:
            logger.warning("Test split is empty; no held-out metrics recorded")
            metrics = ModelMetrics(task_type=self.task_type)

        if cfg.use_cross_validation:
            scores, failures = self._cross_validate(rows, params, cfg)
            metrics = metrics.model_copy(
                update={
                    "cross_validation_scores": scores,
                    "cross_validation_failures": failures or None,
                }
            )

        self._metrics = metrics
        self._trained_at = datetime.now(timezone.utc).isoformat()
        logger.info("Training complete: %s", metrics.model_dump(exclude_none=True))
        return metrics

    @staticmethod
    def _training_config(config: TrainingConfig | Mapping[str, Any] | None) -> TrainingConfig:
        if config is None:
            return TrainingConfig()
        if isinstance(config, TrainingConfig):
            return config
        return TrainingConfig.model_validate(dict(config))

    def _fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        params: dict[str, Any],
        workers: int = 1,
    ) -> tuple[Optional[GradientBoostedTrees], Mapping[str, GradientBoostedTrees]]:
        """Fit either one booster or the one-vs-rest set; returns ``(model, ovr)``."""
        if self.uses_one_vs_rest(params["objective"]):
            return None, self._fit_one_vs_rest(X, y, params, workers)

        num_class = len(self._classes) if is_multiclass_objective(params["objective"]) else None
        return GradientBoostedTrees(params, num_class).fit(X, y), MappingProxyType({})

    def _fit_one_vs_rest(
        self,
        X: np.ndarray,
        y: np.ndarray,
        params: dict[str, Any],
        workers: int,
    ) -> Mapping[str, GradientBoostedTrees]:
        binary_params = {**params, "objective": "binary:logistic"}

        def fit_class(index: int) -> GradientBoostedTrees:
            labels = (y == index).astype(np.float64)
            return GradientBoostedTrees(binary_params).fit(X, labels)

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as ex:
                fitted = list(ex.map(fit_class, range(len(self._classes))))
        else:
            fitted = [fit_class(i) for i in range(len(self._classes))]

        logger.debug("Fitted %d one-vs-rest models", len(fitted))
        return MappingProxyType(dict(zip(self._classes, fitted)))

    # ── Evaluation ────────────────────────────────────────────────────────────

    def predict_matrix(self, X: np.ndarray) -> list[PredictionResult]:
        """Predict pre-encoded rows with the trained model(s).

        Raises:
            NotTrained: Before a successful ``train()``.
        """
        self._require_trained()
        return self._predict(X, self._model, self._ovr_models)

    def _predict(
        self,
        X: np.ndarray,
        model: Optional[GradientBoostedTrees],
        ovr_models: Mapping[str, GradientBoostedTrees],
    ) -> list[PredictionResult]:
        return predict_matrix(
            X,
            self.task_type,
            classes=self._classes,
            model=model,
            ovr_models=ovr_models,
            normalization=self._normalization,
        )

    def evaluate(self) -> ModelMetrics:
        """Recompute held-out metrics for the trained model.

        Raises:
            NotTrained: Before a successful ``train()``.
        """
        self._require_trained()
        if not self._test_records:
            return ModelMetrics(task_type=self.task_type)
        return self._evaluate(self._test_records)

    def _evaluate(
        self,
        records: Sequence[Record],
        model: Optional[GradientBoostedTrees] = None,
        ovr_models: Optional[Mapping[str, GradientBoostedTrees]] = None,
    ) -> ModelMetrics:
        if model is None and ovr_models is None:
            model, ovr_models = self._model, self._ovr_models
        predictions = self._predict(self.transform_records(records), model, ovr_models or {})

        if self.task_type == "regression":
            actual = [to_number(r.get(self.target)) for r in records]
            return regression_model_metrics([p.value for p in predictions], actual)

        actual_idx = [int(v) for v in self.transform_targets(records)]
        probabilities = [p.probabilities or p.scores for p in predictions]
        return classification_metrics(
            [p.class_index for p in predictions],
            actual_idx,
            num_classes=len(self._classes),
            probabilities=probabilities,
        )

    def _cross_validate(
        self,
        rows: Sequence[Record],
        params: dict[str, Any],
        cfg: TrainingConfig,
    ) -> tuple[list[float], dict[int, str]]:
        """Contiguous k-fold over ``rows``; returns ``(scores, failures)``."""
        scores: list[float] = []
        failures: dict[int, str] = {}

        for fold in kfold_slices(len(rows), cfg.n_folds):
            train_rows, test_rows = fold.split(rows)
            try:
                X = self.transform_records(train_rows)
                y = self.transform_targets(train_rows)
                model, ovr = self._fit(X, y, params, cfg.parallel_workers)
                predictions = self._predict(self.transform_records(test_rows), model, ovr)
                scores.append(self._fold_score(test_rows, predictions))
            except Exception as exc:
                logger.error("Cross-validation fold %d failed: %s", fold.index, exc)
                failures[fold.index] = str(exc)
                continue
            logger.debug("Fold %d score=%.4f", fold.index, scores[-1])

        logger.info(
            "Cross-validation: %d/%d folds scored", len(scores), cfg.n_folds
        )
        return scores, failures

    def _fold_score(self, records: Sequence[Record], predictions: list[PredictionResult]) -> float:
        if self.task_type == "regression":
            actual = [to_number(r.get(self.target)) for r in records]
            return regression_metrics([p.value for p in predictions], actual).rmse
        actual_idx = [int(v) for v in self.transform_targets(records)]
        return accuracy([p.class_index for p in predictions], actual_idx)

    # ── Metadata & persistence ────────────────────────────────────────────────

    def get_model_metadata(self) -> ModelMetadata:
        """Build the persisted description of the trained model.

        Raises:
            NotTrained: Before a successful ``train()``.
        """
        self._require_trained()
        layout = self._require_layout()
        specs = self._analysis.categorical_specs
        return ModelMetadata(
            created_at=self._trained_at,
            categorical_features=list(self.categorical_features),
            numeric_features=list(self.numeric_features),
            target=self.target,
            task_type=self.task_type,
            classes=list(self._classes) or None,
            num_classes=len(self._classes) or None,
            booster_params=dict(self._params),
            encoders=[
                EncoderMetadata(
                    feature_name=name,
                    bucket_count=layout.encoders[name].bucket_count,
                    hash_seed=layout.encoders[name].hash_seed,
                    unique_count=specs[name].k,
                )
                for name in self.categorical_features
            ],
            metrics=self._metrics,
            is_one_vs_rest=self.is_one_vs_rest,
            target_stats=self._target_stats,
            target_normalization=self._normalization,
        )

    def save(self, directory: Path | str) -> Path:
        """Write the trained bundle to ``directory``.

        Tree artifact(s) first, then ``encoders.json``, then
        ``metadata.json``; each file is replaced atomically.

        Returns:
            The model directory.

        Raises:
            NotTrained: Before a successful ``train()``.
        """
        metadata = self.get_model_metadata()
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        if self._ovr_models:
            for label, model in self._ovr_models.items():
                atomic_write_json(class_artifact_path(directory, label), model.to_json())
        else:
            atomic_write_json(directory / MODEL_FILE, self._model.to_json())

        write_encoders(
            directory,
            [self._layout.encoders[name].config for name in self.categorical_features],
        )
        write_metadata(directory, metadata)
        logger.info("Model saved: %s (one_vs_rest=%s)", directory, self.is_one_vs_rest)
        return directory

    # ── Guards ────────────────────────────────────────────────────────────────

    def _require_layout(self) -> FeatureLayout:
        if self._layout is None:
            raise ValidationError("No data loaded; call load_raw() first")
        return self._layout

    def _require_trained(self) -> None:
        if not self.is_trained:
            raise NotTrained("Model has not been trained; call train() first")
