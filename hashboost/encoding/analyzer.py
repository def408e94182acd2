"""
One-pass dataset analysis that turns raw columns into encoder configuration.

``FeatureAnalyzer.analyze_features()`` runs before any encoding:

- Categorical features: count distinct *normalised* values ``k`` (the same
  ``normalize_value()`` used by ``HashEncoder``, so ``" red"`` and ``"red"``
  are one value and every null is ``"__NULL__"``), then size the encoder with
  the bucket rule (``k**2`` up to 1000 distinct values, ``20 * k`` beyond).
- Numeric features: min / max / mean / population std over values that
  coerce to a number; everything else is counted as null.
- Target (optional): sorted distinct string labels.

High null rates, single-valued features and very high cardinality are
reported as warnings only — none of them block training.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from hashboost.config import EncodingConfig
from hashboost.encoding.hash_encoder import NULL_TOKEN, HashEncoder, normalize_value
from hashboost.encoding.layout import to_number
from hashboost.exceptions import ValidationError

logger = logging.getLogger(__name__)

Record = dict[str, Any]

NUMERIC_TYPE_THRESHOLD = 0.8  # share of numeric samples to call a column numeric


@dataclass(frozen=True)
class FeatureSpec:
    """Encoder sizing for one categorical feature.

    Attributes:
        k:            Distinct normalised values (nulls count once).
        bucket_count: Derived encoder width; a pure function of ``k``.
    """

    k: int
    bucket_count: int


@dataclass(frozen=True)
class NumericStats:
    min: float
    max: float
    mean: float
    std: float
    null_count: int


@dataclass(frozen=True)
class DatasetStats:
    total_rows: int
    total_features: int
    categorical_features: int
    numeric_features: int
    target_classes: list[str]
    null_values: int


@dataclass(frozen=True)
class FeatureAnalysisResult:
    categorical_specs: dict[str, FeatureSpec]
    numeric_stats: dict[str, NumericStats]
    dataset_stats: DatasetStats


@dataclass(frozen=True)
class FeatureTypeSuggestion:
    categorical: list[str] = field(default_factory=list)
    numeric: list[str] = field(default_factory=list)


# ── Analyzer ──────────────────────────────────────────────────────────────────


class FeatureAnalyzer:
    """Derive ``FeatureSpec``/``NumericStats`` from a list of raw records.

    Args:
        encoding: Sizing constants and warning thresholds. Defaults to
            ``EncodingConfig()``.
    """

    def __init__(self, encoding: EncodingConfig | None = None) -> None:
        self.encoding = encoding or EncodingConfig()

    def analyze_features(
        self,
        data: Sequence[Record],
        categorical_features: Sequence[str],
        numeric_features: Sequence[str] = (),
        target_feature: str | None = None,
    ) -> FeatureAnalysisResult:
        """Analyse ``data`` for the declared features.

        Args:
            data:                 Raw records (feature name -> scalar).
            categorical_features: Columns to hash-encode.
            numeric_features:     Columns passed through as numbers.
            target_feature:       Optional label column (classification).

        Returns:
            ``FeatureAnalysisResult`` with specs keyed by feature name.

        Raises:
            ValidationError: Empty data, no features, a declared feature
                missing from the first record, or a feature listed as both
                categorical and numeric.
        """
        categorical_features = list(categorical_features)
        numeric_features = list(numeric_features)

        logger.info(
            "Analysing %d rows: %d categorical, %d numeric feature(s)",
            len(data), len(categorical_features), len(numeric_features),
        )
        self._validate_input(data, categorical_features, numeric_features, target_feature)

        categorical_specs = {
            name: self._analyze_categorical(data, name) for name in categorical_features
        }
        numeric_stats = {
            name: self._analyze_numeric(data, name) for name in numeric_features
        }
        target_classes = (
            self._analyze_target_classes(data, target_feature) if target_feature else []
        )

        null_values = sum(
            1
            for record in data
            for name in (*categorical_features, *numeric_features)
            if record.get(name) is None
        )

        return FeatureAnalysisResult(
            categorical_specs=categorical_specs,
            numeric_stats=numeric_stats,
            dataset_stats=DatasetStats(
                total_rows=len(data),
                total_features=len(categorical_features) + len(numeric_features),
                categorical_features=len(categorical_features),
                numeric_features=len(numeric_features),
                target_classes=target_classes,
                null_values=null_values,
            ),
        )

    def bucket_count_for(self, k: int) -> int:
        """Apply the configured sizing rule to a cardinality."""
        return HashEncoder.suggest_bucket_count(
            k,
            square_threshold=self.encoding.square_threshold,
            linear_multiplier=self.encoding.linear_multiplier,
        )

    # ── Per-feature analysis ──────────────────────────────────────────────────

    def _analyze_categorical(self, data: Sequence[Record], feature: str) -> FeatureSpec:
        unique: set[str] = set()
        null_count = 0
        for record in data:
            token = normalize_value(record.get(feature))
            if token == NULL_TOKEN:
                null_count += 1
            unique.add(token)

        k = len(unique)
        bucket_count = self.bucket_count_for(k)
        total = len(data)

        if null_count > total * self.encoding.null_rate_warning:
            logger.warning(
                "Feature %s has %d/%d null values (%.1f%%)",
                feature, null_count, total, 100.0 * null_count / total,
            )
        if k == 1:
            logger.warning(
                "Feature %s has only one unique value - consider removing it", feature
            )
        if k > self.encoding.high_cardinality_warning:
            logger.warning(
                "Feature %s has %d unique values - very high cardinality", feature, k
            )

        logger.debug("Feature %s: k=%d, bucketCount=%d", feature, k, bucket_count)
        return FeatureSpec(k=k, bucket_count=bucket_count)

    def _analyze_numeric(self, data: Sequence[Record], feature: str) -> NumericStats:
        values: list[float] = []
        null_count = 0
        for record in data:
            v = to_number(record.get(feature))
            if v is None:
                null_count += 1
            else:
                values.append(v)

        if not values:
            logger.warning("Feature %s has no valid numeric values", feature)
            return NumericStats(min=0.0, max=0.0, mean=0.0, std=0.0, null_count=null_count)

        n = len(values)
        mean = sum(values) / n
        std = math.sqrt(sum((v - mean) ** 2 for v in values) / n)

        if null_count > len(data) * self.encoding.null_rate_warning:
            logger.warning(
                "Feature %s has %d/%d null values (%.1f%%)",
                feature, null_count, len(data), 100.0 * null_count / len(data),
            )
        if std == 0.0:
            logger.warning(
                "Feature %s has zero standard deviation - all values are the same", feature
            )

        return NumericStats(
            min=min(values), max=max(values), mean=mean, std=std, null_count=null_count
        )

    def _analyze_target_classes(self, data: Sequence[Record], target: str) -> list[str]:
        labels: set[str] = set()
        null_count = 0
        for record in data:
            value = record.get(target)
            if value is None:
                null_count += 1
            else:
                labels.add(str(value))

        if null_count:
            logger.warning(
                "Target feature %s has %d/%d null values", target, null_count, len(data)
            )
        classes = sorted(labels)
        logger.info("Target feature %s has %d unique classes", target, len(classes))
        return classes

    # ── Validation ────────────────────────────────────────────────────────────

    @staticmethod
    def _validate_input(
        data: Sequence[Record],
        categorical_features: list[str],
        numeric_features: list[str],
        target_feature: str | None,
    ) -> None:
        if not data:
            raise ValidationError("Data array is empty or undefined")

        if not categorical_features and not numeric_features:
            raise ValidationError("No features specified for analysis")

        required = [*categorical_features, *numeric_features]
        if target_feature:
            required.append(target_feature)

        first = data[0]
        missing = [name for name in required if name not in first]
        if missing:
            raise ValidationError(f"Features not found in data: {', '.join(missing)}")

        overlap = [name for name in categorical_features if name in numeric_features]
        if overlap:
            raise ValidationError(
                f"Features listed in both categorical and numeric: {', '.join(overlap)}"
            )

    # ── Auxiliary diagnostics ─────────────────────────────────────────────────

    def suggest_feature_types(
        self, data: Sequence[Record], sample_size: int = 100
    ) -> FeatureTypeSuggestion:
        """Guess column types from the first ``sample_size`` rows.

        A column is numeric when more than 80% of its non-null sampled values
        parse as numbers; all-null columns are left out. Not used by the
        encoding path.
        """
        if not data:
            return FeatureTypeSuggestion()

        sample = list(data[:sample_size])
        suggestion = FeatureTypeSuggestion()
        for feature in sample[0]:
            present = [r.get(feature) for r in sample if r.get(feature) is not None]
            if not present:
                continue
            numeric = sum(1 for v in present if to_number(v) is not None)
            if numeric / len(present) > NUMERIC_TYPE_THRESHOLD:
                suggestion.numeric.append(feature)
            else:
                suggestion.categorical.append(feature)

        logger.info(
            "Feature type suggestions: %d categorical, %d numeric",
            len(suggestion.categorical), len(suggestion.numeric),
        )
        return suggestion

    def analyze_correlation(
        self, data: Sequence[Record], numeric_features: Sequence[str]
    ) -> dict[str, dict[str, float]]:
        """Pairwise Pearson correlation matrix for numeric features."""
        matrix: dict[str, dict[str, float]] = {}
        for a in numeric_features:
            matrix[a] = {}
            for b in numeric_features:
                matrix[a][b] = 1.0 if a == b else _pearson(data, a, b)
        return matrix


def _pearson(data: Sequence[Record], a: str, b: str) -> float:
    pairs = [
        (x, y)
        for x, y in ((to_number(r.get(a)), to_number(r.get(b))) for r in data)
        if x is not None and y is not None
    ]
    if len(pairs) < 2:
        return 0.0

    mean_a = sum(x for x, _ in pairs) / len(pairs)
    mean_b = sum(y for _, y in pairs) / len(pairs)
    num = sum((x - mean_a) * (y - mean_b) for x, y in pairs)
    ss_a = sum((x - mean_a) ** 2 for x, _ in pairs)
    ss_b = sum((y - mean_b) ** 2 for _, y in pairs)
    denom = math.sqrt(ss_a * ss_b)
    return 0.0 if denom == 0.0 else num / denom
