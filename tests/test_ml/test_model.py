"""
Tests for hashboost/ml/model.py.

What we test
------------
Model.load() error paths:
  - ModelNotFound (no directory), MetadataMissing (no metadata.json),
    ArtifactMissing (no model.json / no models/ / one class file missing),
    ValidationError (encoders.json disagrees with metadata.json).

Inference behaviour:
  - Missing categorical -> full-length vector with a zero block + warning.
  - Task-type guards: predict() on regression, predict_value() on
    classification, classes on regression.
  - Binary probabilities sum to 1; probability is that of the chosen class.
  - One-vs-rest exposes scores; predict_probabilities() refuses.
  - Regression output is denormalised (0.5 -> 200 for range [100, 300]).
  - Batch summaries: per-label counts, average confidence, min/max/mean.
  - validate_record(), introspection and repr.
"""

from __future__ import annotations

import json
import logging

import numpy as np
import pytest

from hashboost.exceptions import (
    ArtifactMissing,
    MetadataMissing,
    ModelNotFound,
    ValidationError,
)
from hashboost.ml.metadata import EncoderMetadata, ModelMetadata, ModelMetrics, TargetNormalization
from hashboost.ml.model import Model
from hashboost.ml.trainer import Trainer


@pytest.fixture
def binary_model_dir(binary_records, tmp_path):
    trainer = Trainer(["color"], ["price"], "sold")
    trainer.load_raw(binary_records)
    trainer.train()
    return trainer.save(tmp_path / "binary")


@pytest.fixture
def ovr_model_dir(four_class_records, tmp_path):
    trainer = Trainer(["shape"], ["weight"], "grade", booster={"objective": "binary:logistic"})
    trainer.load_raw(four_class_records)
    trainer.train()
    return trainer.save(tmp_path / "ovr")


class _ConstantBooster:
    """Stands in for GradientBoostedTrees; always predicts ``value``."""

    def __init__(self, value: float) -> None:
        self.value = value

    def predict_batch(self, X):
        return [self.value] * len(X)


def _regression_model(value: float = 0.5) -> Model:
    metadata = ModelMetadata(
        created_at="2024-01-01T00:00:00+00:00",
        categorical_features=["region"],
        numeric_features=["rooms"],
        target="value",
        task_type="regression",
        encoders=[EncoderMetadata(feature_name="region", bucket_count=9, hash_seed=42, unique_count=3)],
        metrics=ModelMetrics(task_type="regression", rmse=1.0),
        target_normalization=TargetNormalization(min=100, max=300),
    )
    return Model(metadata, model=_ConstantBooster(value))


# ── Loading errors ────────────────────────────────────────────────────────────

class TestLoadErrors:
    def test_missing_directory(self, tmp_path):
        with pytest.raises(ModelNotFound):
            Model.load(tmp_path / "nope")

    def test_missing_metadata(self, binary_model_dir):
        (binary_model_dir / "metadata.json").unlink()
        with pytest.raises(MetadataMissing):
            Model.load(binary_model_dir)

    def test_missing_model_file(self, binary_model_dir):
        (binary_model_dir / "model.json").unlink()
        with pytest.raises(ArtifactMissing, match="model.json"):
            Model.load(binary_model_dir)

    def test_missing_class_file(self, ovr_model_dir):
        (ovr_model_dir / "models" / "c.json").unlink()
        with pytest.raises(ArtifactMissing, match="'c'"):
            Model.load(ovr_model_dir)

    def test_missing_models_dir(self, ovr_model_dir):
        for path in (ovr_model_dir / "models").iterdir():
            path.unlink()
        (ovr_model_dir / "models").rmdir()
        with pytest.raises(ArtifactMissing, match="directory"):
            Model.load(ovr_model_dir)

    def test_errors_are_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Model.load(tmp_path / "nope")

    def test_encoders_mismatch(self, binary_model_dir):
        path = binary_model_dir / "encoders.json"
        encoders = json.loads(path.read_text())
        encoders[0]["bucketCount"] += 1
        path.write_text(json.dumps(encoders))
        with pytest.raises(ValidationError, match="encoders.json"):
            Model.load(binary_model_dir)

    def test_invalid_metadata(self, binary_model_dir):
        path = binary_model_dir / "metadata.json"
        meta = json.loads(path.read_text())
        meta["classes"] = []
        path.write_text(json.dumps(meta))
        with pytest.raises(ValidationError, match="metadata.json"):
            Model.load(binary_model_dir)


# ── Transformation ────────────────────────────────────────────────────────────

class TestTransform:
    def test_missing_categorical_zero_block(self, binary_model_dir, caplog):
        model = Model.load(binary_model_dir)
        with caplog.at_level(logging.WARNING):
            vec = model.transform({"price": 70})
        assert vec.shape == (model.feature_count,)
        assert vec[:4].sum() == 0.0
        assert vec[-1] == pytest.approx(70.0)
        assert any("Missing categorical feature color" in r.getMessage() for r in caplog.records)

    def test_missing_categorical_still_predicts(self, binary_model_dir):
        assert Model.load(binary_model_dir).predict({"price": 70}) in (0, 1)

    def test_validate_record(self, binary_model_dir):
        result = Model.load(binary_model_dir).validate_record({"color": "red", "extra": 1})
        assert not result.is_valid
        assert result.missing_features == ["price"]
        assert result.extra_features == ["extra"]


# ── Classification ────────────────────────────────────────────────────────────

class TestClassification:
    def test_binary_probabilities(self, binary_model_dir):
        model = Model.load(binary_model_dir)
        record = {"color": "blue", "price": 100}
        probs = model.predict_probabilities(record)
        assert len(probs) == 2
        assert sum(probs) == pytest.approx(1.0)

        result = model.predict_with_probabilities(record)
        assert result.class_index == (1 if probs[1] > 0.5 else 0)
        assert result.class_label == model.classes[result.class_index]
        assert result.probability == pytest.approx(probs[result.class_index])
        assert result.scores is None

    def test_batch_summary(self, binary_model_dir, binary_records):
        model = Model.load(binary_model_dir)
        batch = model.predict_batch_with_probabilities(binary_records)
        assert len(batch.predictions) == 4
        assert sum(batch.prediction_stats.values()) == 4
        assert set(batch.prediction_stats) <= {"no", "yes"}
        assert 0.5 <= batch.average_confidence <= 1.0
        assert model.predict_batch(binary_records) == [p.class_index for p in batch.predictions]

    def test_empty_batch(self, binary_model_dir):
        batch = Model.load(binary_model_dir).predict_batch_with_probabilities([])
        assert batch.predictions == []
        assert batch.average_confidence is None

    def test_one_vs_rest_scores(self, ovr_model_dir):
        model = Model.load(ovr_model_dir)
        assert model.is_one_vs_rest
        record = {"shape": "circle", "weight": 2.0}
        scores = model.predict_scores(record)
        assert len(scores) == 4
        assert model.predict(record) == int(np.argmax(scores))
        with pytest.raises(ValidationError, match="predict_scores"):
            model.predict_probabilities(record)

    def test_predict_scores_needs_one_vs_rest(self, binary_model_dir):
        with pytest.raises(ValidationError, match="one-vs-rest"):
            Model.load(binary_model_dir).predict_scores({"color": "red", "price": 1})

    def test_predict_value_refused(self, binary_model_dir):
        with pytest.raises(ValidationError, match="regression"):
            Model.load(binary_model_dir).predict_value({"color": "red", "price": 1})


# ── Regression ────────────────────────────────────────────────────────────────

class TestRegression:
    def test_denormalised_value(self):
        model = _regression_model(0.5)
        assert model.predict_value({"region": "north", "rooms": 2}) == pytest.approx(200.0)
        assert model.predict_value_batch([{"region": "east", "rooms": 1}] * 2) == pytest.approx([200.0, 200.0])

    def test_regression_guards(self):
        model = _regression_model()
        with pytest.raises(ValidationError, match="classification"):
            model.predict({"region": "north", "rooms": 2})
        with pytest.raises(ValidationError):
            model.classes

    def test_regression_batch_stats(self):
        batch = _regression_model(1.0).predict_batch_with_probabilities([{"region": "x", "rooms": 0}] * 3)
        assert batch.prediction_stats == {"min": 300.0, "max": 300.0, "mean": 300.0}
        assert batch.average_confidence is None
        assert batch.predictions[0].value == pytest.approx(300.0)

    def test_trained_regression_round_trip(self, regression_records, tmp_path):
        trainer = Trainer(["region"], ["rooms"], "value", task_type="regression")
        trainer.load_raw(regression_records)
        trainer.train()
        model = Model.load(trainer.save(tmp_path / "reg"))
        value = model.predict_value({"region": "north", "rooms": 1})
        assert 50.0 < value < 350.0
        assert model.target_stats.min == 100.0

    def test_constructor_needs_booster(self):
        model = _regression_model()
        with pytest.raises(ValidationError, match="booster"):
            Model(model.metadata)


# ── Introspection ─────────────────────────────────────────────────────────────

def test_introspection(binary_model_dir):
    model = Model.load(binary_model_dir)
    assert model.task_type == "classification"
    assert model.feature_count == 5
    assert model.feature_names == ["color_0", "color_1", "color_2", "color_3", "price"]
    assert model.version == "1.0.0"
    assert model.created_at
    assert model.training_metrics.task_type == "classification"
    assert repr(model) == "Model(task=classification, features=5, classes=2, one_vs_rest=False)"


def test_regression_repr():
    assert repr(_regression_model()) == "Model(task=regression, features=10, target=value)"
