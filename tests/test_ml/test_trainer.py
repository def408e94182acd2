"""
Tests for hashboost/ml/trainer.py.

What we test
------------
Binary scenario (4 records, color/price -> sold):
  - color sized to 4 buckets; classes sorted ["no", "yes"].
  - save() writes model.json, encoders.json, metadata.json; the reloaded
    model predicts a valid class index.

Multi-class dispatch:
  - Default objective (multi:softprob) -> one native model, model.json.
  - binary:logistic with 4 classes -> one-vs-rest: 4 models, models/<label>.json,
    metadata isOneVsRest.
  - parallel_workers=2 gives the same one-vs-rest scores as sequential.

Targets:
  - Regression targets normalised to [0, 1] from training min/max.
  - UnknownClass for an unseen label; ValidationError for a non-numeric
    regression target at load time.

Lifecycle guards: ValidationError before load_raw; NotTrained before train;
invalid task type; missing features.

Cross-validation: one score per fold; a failing fold is recorded and the
rest still run.

Empty test split: warning, metrics carry only the task type.

Train/inference symmetry: Model.transform_batch() on the last training
records equals the matrix the model was fitted on.
"""

from __future__ import annotations

import json
import logging

import numpy as np
import pytest

from hashboost.exceptions import NotTrained, UnknownClass, ValidationError
from hashboost.ml.model import Model
from hashboost.ml.trainer import Trainer


def _binary_trainer(records) -> Trainer:
    trainer = Trainer(["color"], ["price"], "sold")
    trainer.load_raw(records)
    return trainer


# ── Binary scenario ───────────────────────────────────────────────────────────

class TestBinaryScenario:
    def test_load_raw_sizes_encoders(self, binary_records):
        trainer = _binary_trainer(binary_records)
        assert trainer.encoders["color"].bucket_count == 4
        assert trainer.encoders["color"].hash_seed == 42
        assert trainer.classes == ["no", "yes"]
        assert not trainer.is_multi_class
        assert trainer.layout.width == 5
        assert not trainer.is_trained

    def test_train_save_and_reload(self, binary_records, tmp_path):
        trainer = _binary_trainer(binary_records)
        metrics = trainer.train()
        assert metrics.task_type == "classification"
        assert metrics.accuracy is not None
        assert trainer.is_trained
        assert not trainer.is_one_vs_rest

        out = trainer.save(tmp_path / "sold")
        assert sorted(p.name for p in out.iterdir()) == ["encoders.json", "metadata.json", "model.json"]

        meta = json.loads((out / "metadata.json").read_text())
        assert meta["classes"] == ["no", "yes"]
        assert meta["encoders"][0]["bucketCount"] == 4
        assert meta["xgbParams"]["objective"] == "binary:logistic"
        assert meta["isOneVsRest"] is False

        model = Model.load(out)
        assert model.predict({"color": "red", "price": 50}) in (0, 1)
        assert model.classes == ["no", "yes"]

    def test_split_is_floor_of_ratio(self, binary_records):
        trainer = _binary_trainer(binary_records)
        trainer.train({"test_ratio": 0.2})
        assert len(trainer.last_training_records) == 3

    def test_metrics_cover_test_split(self, larger_binary_records):
        trainer = Trainer(["color", "size"], ["price"], "sold")
        trainer.load_raw(larger_binary_records)
        metrics = trainer.train()
        assert 0.0 <= metrics.accuracy <= 1.0
        assert sum(map(sum, metrics.confusion_matrix)) == 8
        assert metrics.roc_auc is not None

    def test_training_is_reproducible(self, larger_binary_records):
        def run():
            trainer = Trainer(["color", "size"], ["price"], "sold")
            trainer.load_raw(larger_binary_records)
            trainer.train({"seed": 5})
            return trainer.last_training_records

        assert run() == run()


# ── Multi-class dispatch ──────────────────────────────────────────────────────

class TestMultiClass:
    def test_native_multiclass(self, four_class_records, tmp_path):
        trainer = Trainer(["shape"], ["weight"], "grade")
        trainer.load_raw(four_class_records)
        assert trainer.is_multi_class
        assert not trainer.uses_one_vs_rest()
        trainer.train()
        assert trainer.model is not None
        assert not trainer.is_one_vs_rest

        out = trainer.save(tmp_path / "grade")
        assert (out / "model.json").exists()
        assert not (out / "models").exists()

        model = Model.load(out)
        probs = model.predict_probabilities({"shape": "square", "weight": 1.0})
        assert len(probs) == 4
        assert sum(probs) == pytest.approx(1.0, abs=1e-6)

    def test_one_vs_rest(self, four_class_records, tmp_path):
        trainer = Trainer(["shape"], ["weight"], "grade", booster={"objective": "binary:logistic"})
        trainer.load_raw(four_class_records)
        assert trainer.uses_one_vs_rest()
        trainer.train()

        assert trainer.is_one_vs_rest
        assert trainer.model is None
        assert sorted(trainer.models) == ["a", "b", "c", "d"]
        with pytest.raises(TypeError):
            trainer.models["e"] = trainer.models["a"]

        out = trainer.save(tmp_path / "grade")
        assert sorted(p.name for p in (out / "models").iterdir()) == [
            "a.json", "b.json", "c.json", "d.json",
        ]
        assert not (out / "model.json").exists()
        assert json.loads((out / "metadata.json").read_text())["isOneVsRest"] is True

    def test_one_vs_rest_scores(self, four_class_records):
        trainer = Trainer(["shape"], [], "grade", booster={"objective": "binary:logistic"})
        trainer.load_raw(four_class_records)
        trainer.train()
        X = trainer.transform_records([{"shape": "triangle"}])
        result = trainer.predict_matrix(X)[0]
        assert result.probabilities is None
        assert len(result.scores) == 4
        assert result.class_label == trainer.classes[result.class_index]
        assert result.probability == max(result.scores)

    def test_parallel_matches_sequential(self, four_class_records):
        def scores(workers):
            trainer = Trainer(["shape"], ["weight"], "grade", booster={"objective": "binary:logistic"})
            trainer.load_raw(four_class_records)
            trainer.train({"parallel_workers": workers})
            X = trainer.transform_records(four_class_records[:4])
            return [r.scores for r in trainer.predict_matrix(X)]

        sequential = scores(1)
        parallel = scores(2)
        for a, b in zip(sequential, parallel):
            assert a == pytest.approx(b)

    def test_two_classes_never_one_vs_rest(self, binary_records):
        trainer = Trainer(["color"], ["price"], "sold", booster={"objective": "binary:logistic"})
        trainer.load_raw(binary_records)
        assert not trainer.uses_one_vs_rest()


# ── Targets ───────────────────────────────────────────────────────────────────

class TestTargets:
    def test_regression_normalisation(self, regression_records):
        trainer = Trainer(["region"], ["rooms"], "value", task_type="regression")
        trainer.load_raw(regression_records)
        assert trainer.target_normalization.min == 100
        assert trainer.target_normalization.max == 300
        assert trainer.target_stats.mean == pytest.approx(200.0)
        targets = trainer.transform_targets(regression_records[:3])
        assert targets.tolist() == pytest.approx([0.0, 0.5, 1.0])

    def test_unknown_class(self, binary_records):
        trainer = _binary_trainer(binary_records)
        with pytest.raises(UnknownClass, match="maybe"):
            trainer.transform_targets([{"color": "red", "price": 1, "sold": "maybe"}])

    def test_classification_targets_are_indices(self, binary_records):
        trainer = _binary_trainer(binary_records)
        assert trainer.transform_targets(binary_records).tolist() == [1.0, 0.0, 1.0, 0.0]

    def test_non_numeric_regression_target(self, regression_records):
        records = [*regression_records, {"region": "north", "rooms": 1, "value": "n/a"}]
        trainer = Trainer(["region"], ["rooms"], "value", task_type="regression")
        with pytest.raises(ValidationError, match="non-numeric"):
            trainer.load_raw(records)

    def test_regression_train_and_metadata(self, regression_records, tmp_path):
        trainer = Trainer(["region"], ["rooms"], "value", task_type="regression")
        trainer.load_raw(regression_records)
        metrics = trainer.train()
        assert metrics.task_type == "regression"
        assert metrics.rmse is not None
        meta = trainer.get_model_metadata()
        assert meta.classes is None
        assert meta.target_normalization.max == 300
        assert meta.booster_params["objective"] == "reg:squarederror"


# ── Guards ────────────────────────────────────────────────────────────────────

class TestGuards:
    def test_invalid_task_type(self):
        with pytest.raises(ValidationError, match="task_type"):
            Trainer(["a"], [], "t", task_type="ranking")

    def test_train_before_load(self):
        with pytest.raises(ValidationError, match="No data loaded"):
            Trainer(["color"], [], "sold").train()

    def test_not_trained(self, binary_records, tmp_path):
        trainer = _binary_trainer(binary_records)
        with pytest.raises(NotTrained):
            trainer.save(tmp_path)
        with pytest.raises(NotTrained):
            trainer.evaluate()
        with pytest.raises(NotTrained):
            trainer.predict_matrix(np.zeros((1, 5)))

    def test_missing_feature(self, binary_records):
        trainer = Trainer(["color", "size"], ["price"], "sold")
        with pytest.raises(ValidationError, match="size"):
            trainer.load_raw(binary_records)

    def test_empty_data(self):
        with pytest.raises(ValidationError, match="empty"):
            Trainer(["color"], [], "sold").load_raw([])

    def test_training_strict_on_missing_categorical(self, binary_records):
        records = [*binary_records[:3], {"price": 10, "sold": "no"}]
        trainer = _binary_trainer(records)
        with pytest.raises(ValidationError, match="color"):
            trainer.train({"test_ratio": 0.0})

    def test_failed_retrain_keeps_previous_model(self, binary_records, monkeypatch, tmp_path):
        trainer = _binary_trainer(binary_records)
        trainer.train()
        previous = trainer.model

        def broken_fit(self, *args, **kwargs):
            raise RuntimeError("fit exploded")

        monkeypatch.setattr(Trainer, "_fit", broken_fit)
        with pytest.raises(RuntimeError, match="fit exploded"):
            trainer.train()

        assert trainer.is_trained
        assert trainer.model is previous
        out = trainer.save(tmp_path / "kept")
        assert (out / "metadata.json").exists()

    def test_load_raw_resets_model(self, binary_records):
        trainer = _binary_trainer(binary_records)
        trainer.train()
        trainer.load_raw(binary_records)
        assert not trainer.is_trained
        assert trainer.model is None


# ── Cross-validation ──────────────────────────────────────────────────────────

class TestCrossValidation:
    def test_one_score_per_fold(self, larger_binary_records):
        trainer = Trainer(["color", "size"], ["price"], "sold")
        trainer.load_raw(larger_binary_records)
        metrics = trainer.train({"use_cross_validation": True, "n_folds": 3})
        assert len(metrics.cross_validation_scores) == 3
        assert all(0.0 <= s <= 1.0 for s in metrics.cross_validation_scores)
        assert metrics.cross_validation_failures is None

    def test_failed_fold_is_isolated(self, larger_binary_records, monkeypatch, caplog):
        original = Trainer._fit
        calls = {"n": 0}

        def flaky_fit(self, *args, **kwargs):
            calls["n"] += 1
            # Call 1 is the main model; call 2 is fold 0.
            if calls["n"] == 2:
                raise RuntimeError("fold exploded")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(Trainer, "_fit", flaky_fit)
        trainer = Trainer(["color", "size"], ["price"], "sold")
        trainer.load_raw(larger_binary_records)
        with caplog.at_level(logging.ERROR):
            metrics = trainer.train({"use_cross_validation": True, "n_folds": 3})

        assert len(metrics.cross_validation_scores) == 2
        assert metrics.cross_validation_failures == {0: "fold exploded"}
        assert any("fold 0 failed" in r.getMessage() for r in caplog.records)

    def test_regression_cv_scores_are_rmse(self, regression_records):
        trainer = Trainer(["region"], [], "value", task_type="regression")
        trainer.load_raw(regression_records)
        metrics = trainer.train({"use_cross_validation": True, "n_folds": 3})
        assert len(metrics.cross_validation_scores) == 3
        assert all(s >= 0.0 for s in metrics.cross_validation_scores)


# ── Split edge cases ──────────────────────────────────────────────────────────

def test_empty_test_split_warns(binary_records, caplog):
    trainer = _binary_trainer(binary_records)
    with caplog.at_level(logging.WARNING):
        metrics = trainer.train({"test_ratio": 0.0})
    assert metrics.accuracy is None
    assert metrics.task_type == "classification"
    assert len(trainer.last_training_records) == 4
    assert any("Test split is empty" in r.getMessage() for r in caplog.records)


# ── Train/inference symmetry ──────────────────────────────────────────────────

def test_saved_model_reproduces_training_matrix(larger_binary_records, tmp_path):
    trainer = Trainer(["color", "size"], ["price"], "sold")
    trainer.load_raw(larger_binary_records)
    trainer.train()
    model = Model.load(trainer.save(tmp_path / "m"))

    rebuilt = model.transform_batch(trainer.last_training_records)
    assert np.array_equal(rebuilt, trainer.last_training_matrix)
    assert model.feature_names == trainer.layout.feature_names()


def test_last_training_matrix_is_a_copy(binary_records):
    trainer = _binary_trainer(binary_records)
    trainer.train()
    matrix = trainer.last_training_matrix
    matrix[:] = -1.0
    assert not np.array_equal(trainer.last_training_matrix, matrix)
