"""
Prediction result types returned by ``Model`` and ``Trainer.predict_matrix``.

Which fields are set depends on how the model was trained:

  binary           class_index, class_label, probability, probabilities=[1-p, p]
  native multi     class_index, class_label, probability, probabilities (softmax)
  one-vs-rest      class_index, class_label, scores (one raw score per class)
  regression       value (denormalised)

One-vs-rest ``scores`` come from independent binary models. They are not a
distribution and are not normalised to sum to 1, which is why they live in
their own field instead of ``probabilities``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class PredictionResult:
    """Prediction for a single record.

    Attributes:
        task_type:     ``"classification"`` or ``"regression"``.
        class_index:   Index into the sorted class list (classification).
        class_label:   The class label at ``class_index``.
        probability:   Confidence in the chosen class (probability, or the
                       winning raw score for one-vs-rest).
        probabilities: Calibrated class probabilities (binary / native multi).
        scores:        Raw per-class scores (one-vs-rest only).
        value:         Denormalised regression output.
    """

    task_type: str
    class_index: Optional[int] = None
    class_label: Optional[str] = None
    probability: Optional[float] = None
    probabilities: Optional[list[float]] = None
    scores: Optional[list[float]] = None
    value: Optional[float] = None


@dataclass(frozen=True)
class BatchPredictionResult:
    """Predictions for many records plus summary statistics.

    Attributes:
        task_type:          ``"classification"`` or ``"regression"``.
        predictions:        One ``PredictionResult`` per input record.
        average_confidence: Mean ``probability`` over classification results
                            (None for regression).
        prediction_stats:   Classification: ``{label: count}``.
                            Regression: ``{"min", "max", "mean"}``.
    """

    task_type: str
    predictions: list[PredictionResult]
    average_confidence: Optional[float] = None
    prediction_stats: dict[str, float] = field(default_factory=dict)


def summarise(task_type: str, predictions: list[PredictionResult]) -> BatchPredictionResult:
    """Wrap ``predictions`` with confidence and distribution statistics."""
    if not predictions:
        return BatchPredictionResult(task_type=task_type, predictions=[])

    if task_type == "regression":
        values = [p.value for p in predictions if p.value is not None]
        stats = (
            {"min": min(values), "max": max(values), "mean": sum(values) / len(values)}
            if values else {}
        )
        return BatchPredictionResult(
            task_type=task_type, predictions=predictions, prediction_stats=stats
        )

    counts: dict[str, float] = {}
    for p in predictions:
        if p.class_label is not None:
            counts[p.class_label] = counts.get(p.class_label, 0) + 1
    confidences = [p.probability for p in predictions if p.probability is not None]
    return BatchPredictionResult(
        task_type=task_type,
        predictions=predictions,
        average_confidence=sum(confidences) / len(confidences) if confidences else None,
        prediction_stats=counts,
    )
