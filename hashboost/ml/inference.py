"""
Turn tree outputs into ``PredictionResult`` objects.

Used by both ``Trainer`` (test-split evaluation) and ``Model`` (serving), so
the decision rules below exist in exactly one place:

- Binary: ``p = P(class 1)``; class 1 wins only when ``p > 0.5``.
- Native multi-class: argmax of the softmax row.
- One-vs-rest: every per-class binary model scores the row; argmax of the
  raw scores, ties going to the earlier label in sorted class order.
- Regression: the normalised output is mapped back with
  ``TargetNormalization.denormalize``.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

import numpy as np

from hashboost.ml.booster import GradientBoostedTrees
from hashboost.ml.metadata import TargetNormalization
from hashboost.ml.results import PredictionResult

BINARY_THRESHOLD = 0.5


def _argmax(values: Sequence[float]) -> int:
    best = 0
    for i in range(1, len(values)):
        if values[i] > values[best]:
            best = i
    return best


def predict_matrix(
    X: np.ndarray,
    task_type: str,
    classes: Sequence[str] = (),
    model: Optional[GradientBoostedTrees] = None,
    ovr_models: Optional[Mapping[str, GradientBoostedTrees]] = None,
    normalization: Optional[TargetNormalization] = None,
) -> list[PredictionResult]:
    """Predict every row of the feature matrix ``X``.

    Args:
        X:             2-D feature matrix from ``FeatureLayout``.
        task_type:     ``"classification"`` or ``"regression"``.
        classes:       Sorted class labels (classification).
        model:         Single booster (binary, native multi-class, regression).
        ovr_models:    Label -> binary booster (one-vs-rest).
        normalization: Target bounds (regression).

    Returns:
        One ``PredictionResult`` per row.
    """
    if len(X) == 0:
        return []

    if task_type == "regression":
        raw = model.predict_batch(X)
        return [
            PredictionResult(
                task_type="regression",
                value=normalization.denormalize(v) if normalization else v,
            )
            for v in raw
        ]

    if ovr_models:
        per_class = [ovr_models[label].predict_batch(X) for label in classes]
        results = []
        for i in range(len(X)):
            scores = [column[i] for column in per_class]
            idx = _argmax(scores)
            results.append(
                PredictionResult(
                    task_type="classification",
                    class_index=idx,
                    class_label=classes[idx],
                    probability=scores[idx],
                    scores=scores,
                )
            )
        return results

    raw = model.predict_batch(X)
    results = []
    for out in raw:
        if isinstance(out, list):
            probs = out
            idx = _argmax(probs)
        else:
            probs = [1.0 - out, out]
            idx = 1 if out > BINARY_THRESHOLD and len(classes) > 1 else 0
        results.append(
            PredictionResult(
                task_type="classification",
                class_index=idx,
                class_label=classes[idx],
                probability=probs[idx],
                probabilities=probs,
            )
        )
    return results
