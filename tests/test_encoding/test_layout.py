"""
Tests for hashboost/encoding/layout.py.

What we test
------------
to_number(): numbers and numeric strings parse; None/bool/NaN/garbage -> None.

FeatureLayout:
  - width and feature_names() follow declared order.
  - transform(): categorical blocks then numerics, in declared order.
  - Record key order never changes output; declared order does.
  - Missing categorical: strict raises, lenient zero-fills with a warning.
  - Invalid numeric values become 0 (warning in lenient mode).
  - transform_batch() equals stacked transform() rows.
  - Numerics are float64: 100000001 and 100000002 stay distinct through
    Trainer.transform_records() and Model.transform().
  - validate_record() reports missing/extra features without mutating.
  - Equality of layouts rebuilt from the same configs.
"""

from __future__ import annotations

import logging
import math

import numpy as np
import pytest

from hashboost.encoding.hash_encoder import HashEncoder
from hashboost.encoding.layout import FeatureLayout, to_number
from hashboost.exceptions import ValidationError
from hashboost.ml.model import Model
from hashboost.ml.trainer import Trainer


def _layout(categorical=("color", "size"), numeric=("price", "qty")) -> FeatureLayout:
    encoders = {
        "color": HashEncoder(4, feature_name="color"),
        "size": HashEncoder(9, feature_name="size"),
    }
    return FeatureLayout(categorical, numeric, encoders)


RECORD = {"color": "red", "size": "m", "price": 9.5, "qty": 3}


# ── to_number ─────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("value, expected", [
    (3, 3.0), (2.5, 2.5), ("4.25", 4.25), (" 7 ", 7.0), ("-1e2", -100.0),
])
def test_to_number_parses(value, expected):
    assert to_number(value) == expected


@pytest.mark.parametrize("value", [None, True, False, "abc", "", float("nan"), [1]])
def test_to_number_rejects(value):
    assert to_number(value) is None


def test_to_number_keeps_infinity():
    assert to_number(math.inf) == math.inf


# ── Shape ─────────────────────────────────────────────────────────────────────

class TestShape:
    def test_width(self):
        assert _layout().width == 4 + 9 + 2

    def test_feature_names(self):
        names = _layout().feature_names()
        assert names[:4] == ["color_0", "color_1", "color_2", "color_3"]
        assert names[4] == "size_0"
        assert names[-2:] == ["price", "qty"]
        assert len(names) == 15

    def test_missing_encoder_raises(self):
        with pytest.raises(ValidationError, match="No encoder"):
            FeatureLayout(["color"], [], {})


# ── transform ─────────────────────────────────────────────────────────────────

class TestTransform:
    def test_concatenation_order(self):
        layout = _layout()
        vec = layout.transform(RECORD)
        color_block = HashEncoder(4, feature_name="color").encode("red")
        size_block = HashEncoder(9, feature_name="size").encode("m")
        expected = np.concatenate([color_block, size_block, [9.5, 3.0]]).astype(np.float64)
        assert vec.dtype == np.float64
        assert np.array_equal(vec, expected)

    def test_key_order_irrelevant(self):
        shuffled = {"qty": 3, "price": 9.5, "size": "m", "color": "red"}
        layout = _layout()
        assert np.array_equal(layout.transform(RECORD), layout.transform(shuffled))

    def test_declared_order_changes_layout(self):
        a = _layout(("color", "size"), ("price", "qty")).transform(RECORD)
        b = _layout(("size", "color"), ("qty", "price")).transform(RECORD)
        assert np.array_equal(b[:9], a[4:13])
        assert np.array_equal(b[9:13], a[:4])
        assert b[-2:].tolist() == [3.0, 9.5]

    def test_missing_categorical_lenient(self, caplog):
        record = {"size": "m", "price": 1, "qty": 2}
        with caplog.at_level(logging.WARNING):
            vec = _layout().transform(record)
        assert vec.shape == (15,)
        assert vec[:4].sum() == 0.0
        assert vec[4:13].sum() == 1.0
        assert any("Missing categorical feature color" in r.getMessage() for r in caplog.records)

    def test_missing_categorical_strict(self):
        with pytest.raises(ValidationError, match="color"):
            _layout().transform({"size": "m", "price": 1, "qty": 2}, strict=True)

    def test_null_categorical_is_encoded_not_skipped(self):
        vec = _layout().transform({**RECORD, "color": None})
        assert vec[:4].sum() == 1.0

    def test_invalid_numeric_is_zero(self, caplog):
        record = {**RECORD, "price": "n/a", "qty": None}
        with caplog.at_level(logging.WARNING):
            vec = _layout().transform(record)
        assert vec[-2:].tolist() == [0.0, 0.0]
        messages = [r.getMessage() for r in caplog.records]
        assert any("Invalid numeric value for price" in m for m in messages)
        assert not any("qty" in m for m in messages)

    def test_numeric_string_parsed(self):
        vec = _layout().transform({**RECORD, "price": "12.5"})
        assert vec[-2] == pytest.approx(12.5)

    def test_batch_matches_single(self):
        layout = _layout()
        records = [RECORD, {**RECORD, "color": "blue"}, {**RECORD, "size": "xl", "qty": 0}]
        matrix = layout.transform_batch(records)
        assert matrix.shape == (3, 15)
        for row, record in zip(matrix, records):
            assert np.array_equal(row, layout.transform(record))

    def test_large_numerics_keep_full_precision(self):
        layout = _layout(numeric=("price", "qty"))
        records = [{**RECORD, "qty": 100000001}, {**RECORD, "qty": 100000002}]
        assert layout.transform(records[0])[-1] == 100000001.0
        assert layout.transform_batch(records)[:, -1].tolist() == [100000001.0, 100000002.0]


# ── Trainer / Model symmetry ──────────────────────────────────────────────────

def test_large_numerics_survive_training_and_inference(tmp_path):
    records = [
        {"color": "red",  "ts": 100000001, "sold": "yes"},
        {"color": "blue", "ts": 100000002, "sold": "no"},
        {"color": "red",  "ts": 100000003, "sold": "yes"},
        {"color": "blue", "ts": 100000004, "sold": "no"},
    ]
    trainer = Trainer(["color"], ["ts"], "sold")
    trainer.load_raw(records)
    assert trainer.transform_records(records)[:, -1].tolist() == [
        100000001.0, 100000002.0, 100000003.0, 100000004.0,
    ]

    trainer.train({"test_ratio": 0.0})
    model = Model.load(trainer.save(tmp_path / "ts"))
    assert model.transform(records[0])[-1] == 100000001.0
    assert model.transform(records[1])[-1] == 100000002.0


# ── validate_record ───────────────────────────────────────────────────────────

class TestValidateRecord:
    def test_complete_record(self):
        result = _layout().validate_record(RECORD)
        assert result.is_valid
        assert result.missing_features == []
        assert result.extra_features == []

    def test_missing_and_extra(self):
        record = {"color": "red", "price": 1, "note": "x"}
        snapshot = dict(record)
        result = _layout().validate_record(record)
        assert not result.is_valid
        assert result.missing_features == ["size", "qty"]
        assert result.extra_features == ["note"]
        assert record == snapshot


# ── Equality ──────────────────────────────────────────────────────────────────

def test_layouts_from_same_configs_are_equal():
    assert _layout() == _layout()
    assert _layout() != _layout(("size", "color"))
