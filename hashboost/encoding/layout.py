"""
Feature-vector layout shared by ``Trainer`` and ``Model``.

Layout
------
A record becomes one flat float vector built by concatenation, in the
*declared* order of the feature lists:

  [ enc(cat_0) | enc(cat_1) | ... | num_0 | num_1 | ... ]

Every categorical feature contributes its full one-hot block (width =
``bucket_count``); every numeric feature contributes one float. The order of
keys inside a record never matters, only the declared lists do. Because the
declared lists and encoder configs are persisted in ``metadata.json``, a
``FeatureLayout`` rebuilt from metadata is equal to the one used in training,
and so is every vector it produces.

Missing data
------------
- ``strict=True`` (training): a missing categorical feature raises
  ``ValidationError``.
- ``strict=False`` (inference): a missing categorical feature leaves its block
  all-zero and logs a warning.
- Numeric values that cannot be read as numbers become ``0.0`` in both modes
  (with a warning when a value was present but invalid).
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from hashboost.encoding.hash_encoder import HashEncoder
from hashboost.exceptions import ValidationError

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]


def to_number(value: Any) -> Optional[float]:
    """Coerce a raw numeric feature value.

    Returns:
        A finite-or-infinite float for ints, floats and numeric strings;
        ``None`` for ``None``, booleans, NaN, and anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        v = float(value)
    elif isinstance(value, str):
        try:
            v = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(v) else v


@dataclass(frozen=True)
class RecordValidation:
    """Result of a pre-flight record check.

    Attributes:
        is_valid:         True when no declared feature is missing.
        missing_features: Declared features absent from the record.
        extra_features:   Record keys that are not declared features.
    """

    is_valid: bool
    missing_features: list[str]
    extra_features: list[str]


class FeatureLayout:
    """Immutable mapping from raw records to feature vectors.

    Args:
        categorical_features: Hash-encoded features, in layout order.
        numeric_features:     Pass-through numeric features, in layout order.
        encoders:             Feature name -> ``HashEncoder`` for every
                              categorical feature.

    Raises:
        ValidationError: If a categorical feature has no encoder.
    """

    def __init__(
        self,
        categorical_features: Sequence[str],
        numeric_features: Sequence[str],
        encoders: Mapping[str, HashEncoder],
    ) -> None:
        missing = [f for f in categorical_features if f not in encoders]
        if missing:
            raise ValidationError(f"No encoder for categorical feature(s): {', '.join(missing)}")

        self._categorical = tuple(categorical_features)
        self._numeric = tuple(numeric_features)
        self._encoders = MappingProxyType({f: encoders[f] for f in self._categorical})

        offsets: dict[str, int] = {}
        pos = 0
        for name in self._categorical:
            offsets[name] = pos
            pos += self._encoders[name].dimension
        self._offsets = MappingProxyType(offsets)
        self._numeric_offset = pos
        self._width = pos + len(self._numeric)

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def categorical_features(self) -> tuple[str, ...]:
        return self._categorical

    @property
    def numeric_features(self) -> tuple[str, ...]:
        return self._numeric

    @property
    def encoders(self) -> Mapping[str, HashEncoder]:
        return self._encoders

    @property
    def width(self) -> int:
        """Total feature-vector length."""
        return self._width

    def feature_names(self) -> list[str]:
        """Column names: ``<feature>_<bucket>`` per categorical slot, then numerics."""
        names: list[str] = []
        for feature in self._categorical:
            names.extend(f"{feature}_{i}" for i in range(self._encoders[feature].dimension))
        names.extend(self._numeric)
        return names

    # ── Transformation ────────────────────────────────────────────────────────

    def transform(self, record: Record, strict: bool = False) -> np.ndarray:
        """Build the feature vector for one record.

        Args:
            record: Raw feature mapping.
            strict: Raise on a missing categorical feature instead of
                    zero-filling its block.

        Returns:
            float64 array of length ``width``.

        Raises:
            ValidationError: ``strict`` and a categorical feature is missing.
        """
        vec = np.zeros(self._width, dtype=np.float64)
        self._fill(vec, record, strict)
        return vec

    def transform_batch(self, records: Sequence[Record], strict: bool = False) -> np.ndarray:
        """Build a 2-D ``(len(records), width)`` float64 matrix."""
        matrix = np.zeros((len(records), self._width), dtype=np.float64)
        for i, record in enumerate(records):
            self._fill(matrix[i], record, strict)
        return matrix

    def _fill(self, out: np.ndarray, record: Record, strict: bool) -> None:
        for feature in self._categorical:
            if feature not in record:
                if strict:
                    raise ValidationError(f"Missing categorical feature: {feature}")
                logger.warning(
                    "Missing categorical feature %s - its encoded block is left at zero",
                    feature,
                )
                continue
            encoder = self._encoders[feature]
            out[self._offsets[feature] + encoder.bucket_index(record[feature])] = 1.0

        for j, feature in enumerate(self._numeric):
            raw = record.get(feature)
            value = to_number(raw)
            if value is None:
                if raw is not None and not strict:
                    logger.warning(
                        "Invalid numeric value for %s: %r - using 0", feature, raw
                    )
                value = 0.0
            out[self._numeric_offset + j] = value

    # ── Validation ────────────────────────────────────────────────────────────

    def validate_record(self, record: Record) -> RecordValidation:
        """Report declared features missing from ``record`` and undeclared extras."""
        declared = (*self._categorical, *self._numeric)
        missing = [f for f in declared if f not in record]
        extra = [k for k in record if k not in declared]
        return RecordValidation(
            is_valid=not missing, missing_features=missing, extra_features=extra
        )

    # ── Dunder ────────────────────────────────────────────────────────────────

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatureLayout):
            return NotImplemented
        return (
            self._categorical == other._categorical
            and self._numeric == other._numeric
            and dict(self._encoders) == dict(other._encoders)
        )

    def __hash__(self) -> int:
        return hash((self._categorical, self._numeric, tuple(self._encoders.values())))

    def __repr__(self) -> str:
        return (
            f"FeatureLayout(categorical={list(self._categorical)}, "
            f"numeric={list(self._numeric)}, width={self._width})"
        )
