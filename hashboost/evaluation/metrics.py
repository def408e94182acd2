"""
Classification and regression evaluation metrics.

Metric notes
------------
Accuracy / confusion matrix
  Computed on class indices. The confusion matrix is ``[actual][predicted]``
  and is sized by ``num_classes``; out-of-range indices are ignored.

Precision / recall / F1
  Per class, in class-index order. A class with no predicted (precision) or
  no actual (recall) rows scores 0 rather than raising.

ROC AUC
  Binary: trapezoid rule over the ROC curve built by sorting scores
  descending. When only one class is present the curve is undefined and the
  result is 0.5 (chance). Multi-class: macro average of one-vs-rest AUCs
  over the classes that appear at least once.

MAPE
  Reported in percent. Rows whose actual value is 0 contribute nothing to
  the numerator but still count in the denominator.

Median absolute error
  The element at index ``n // 2`` of the sorted absolute errors (upper
  median for even ``n``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from hashboost.ml.metadata import ModelMetrics


def _check_lengths(a: Sequence, b: Sequence) -> None:
    if len(a) != len(b):
        raise ValueError(
            f"Predicted and actual sequences must have the same length ({len(a)} != {len(b)})"
        )


# ── Classification ────────────────────────────────────────────────────────────


def accuracy(predicted: Sequence[int], actual: Sequence[int]) -> float:
    _check_lengths(predicted, actual)
    if not predicted:
        return 0.0
    return sum(1 for p, a in zip(predicted, actual) if p == a) / len(predicted)


def confusion_matrix(
    actual: Sequence[int], predicted: Sequence[int], num_classes: int
) -> list[list[int]]:
    _check_lengths(predicted, actual)
    matrix = [[0] * num_classes for _ in range(num_classes)]
    for a, p in zip(actual, predicted):
        if 0 <= a < num_classes and 0 <= p < num_classes:
            matrix[a][p] += 1
    return matrix


def precision_recall_f1(
    predicted: Sequence[int],
    actual: Sequence[int],
    num_classes: Optional[int] = None,
) -> tuple[list[float], list[float], list[float]]:
    """Per-class precision, recall and F1.

    Args:
        predicted:   Predicted class indices.
        actual:      True class indices.
        num_classes: Class count; inferred from the largest index if omitted.

    Returns:
        ``(precision, recall, f1)``, each a list of length ``num_classes``.
    """
    _check_lengths(predicted, actual)
    if num_classes is None:
        num_classes = max([*predicted, *actual], default=-1) + 1

    precision: list[float] = []
    recall: list[float] = []
    f1: list[float] = []
    for c in range(num_classes):
        tp = sum(1 for p, a in zip(predicted, actual) if p == c and a == c)
        fp = sum(1 for p, a in zip(predicted, actual) if p == c and a != c)
        fn = sum(1 for p, a in zip(predicted, actual) if p != c and a == c)
        prec = tp / (tp + fp) if tp + fp else 0.0
        rec = tp / (tp + fn) if tp + fn else 0.0
        precision.append(prec)
        recall.append(rec)
        f1.append(2 * prec * rec / (prec + rec) if prec + rec else 0.0)
    return precision, recall, f1


def roc_auc(scores: Sequence[float], actual: Sequence[int]) -> float:
    """Binary ROC AUC; ``actual`` holds 0/1 labels."""
    _check_lengths(scores, actual)
    positives = sum(1 for a in actual if a == 1)
    negatives = sum(1 for a in actual if a == 0)
    if positives == 0 or negatives == 0:
        return 0.5

    pairs = sorted(zip(scores, actual), key=lambda pair: pair[0], reverse=True)
    tp = fp = 0
    prev_tpr = prev_fpr = 0.0
    auc = 0.0
    for _, label in pairs:
        if label == 1:
            tp += 1
        else:
            fp += 1
        tpr, fpr = tp / positives, fp / negatives
        auc += (fpr - prev_fpr) * (tpr + prev_tpr) / 2.0
        prev_tpr, prev_fpr = tpr, fpr
    return auc


def macro_roc_auc(probabilities: Sequence[Sequence[float]], actual: Sequence[int]) -> float:
    """Mean one-vs-rest AUC over classes that have at least one positive row."""
    _check_lengths(probabilities, actual)
    if not probabilities:
        return 0.5

    aucs: list[float] = []
    for c in range(len(probabilities[0])):
        binary = [1 if a == c else 0 for a in actual]
        if any(binary):
            aucs.append(roc_auc([row[c] for row in probabilities], binary))
    return sum(aucs) / len(aucs) if aucs else 0.5


def classification_metrics(
    predicted: Sequence[int],
    actual: Sequence[int],
    num_classes: int,
    probabilities: Optional[Sequence[Sequence[float]]] = None,
) -> ModelMetrics:
    """Bundle every classification metric into a ``ModelMetrics``.

    ``probabilities`` rows of width 2 give binary AUC on column 1; wider rows
    give macro AUC.
    """
    precision, recall, f1 = precision_recall_f1(predicted, actual, num_classes)
    auc: Optional[float] = None
    if probabilities:
        width = len(probabilities[0])
        if width == 2:
            auc = roc_auc([row[1] for row in probabilities], actual)
        elif width > 2:
            auc = macro_roc_auc(probabilities, actual)

    return ModelMetrics(
        task_type="classification",
        accuracy=accuracy(predicted, actual),
        roc_auc=auc,
        confusion_matrix=confusion_matrix(actual, predicted, num_classes),
        precision=precision,
        recall=recall,
        f1_score=f1,
    )


# ── Regression ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RegressionMetrics:
    mse: float
    rmse: float
    mae: float
    r2: float
    mape: float
    median_ae: float
    n: int


def regression_metrics(predicted: Sequence[float], actual: Sequence[float]) -> RegressionMetrics:
    """MSE, RMSE, MAE, R², MAPE (%) and median absolute error.

    All values are 0 for empty input; R² is 0 when the actuals are constant.
    """
    _check_lengths(predicted, actual)
    n = len(predicted)
    if n == 0:
        return RegressionMetrics(mse=0.0, rmse=0.0, mae=0.0, r2=0.0, mape=0.0, median_ae=0.0, n=0)

    errors = [a - p for p, a in zip(predicted, actual)]
    abs_errors = sorted(abs(e) for e in errors)
    mse = sum(e * e for e in errors) / n
    mae = sum(abs_errors) / n

    mean_actual = sum(actual) / n
    ss_tot = sum((a - mean_actual) ** 2 for a in actual)
    ss_res = sum(e * e for e in errors)
    r2 = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0

    mape = 100.0 * sum(abs(e / a) for e, a in zip(errors, actual) if a != 0) / n

    return RegressionMetrics(
        mse=mse,
        rmse=math.sqrt(mse),
        mae=mae,
        r2=r2,
        mape=mape,
        median_ae=abs_errors[n // 2],
        n=n,
    )


def regression_model_metrics(predicted: Sequence[float], actual: Sequence[float]) -> ModelMetrics:
    m = regression_metrics(predicted, actual)
    return ModelMetrics(
        task_type="regression",
        mse=m.mse,
        rmse=m.rmse,
        mae=m.mae,
        r2=m.r2,
        mape=m.mape,
        median_ae=m.median_ae,
    )


# ── Cross-validation ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CrossValidationStats:
    mean: float
    std: float
    min: float
    max: float
    count: int


def cross_validation_stats(scores: Sequence[float]) -> CrossValidationStats:
    """Mean, population std, min and max of per-fold scores."""
    if not scores:
        return CrossValidationStats(mean=0.0, std=0.0, min=0.0, max=0.0, count=0)
    mean = sum(scores) / len(scores)
    std = math.sqrt(sum((s - mean) ** 2 for s in scores) / len(scores))
    return CrossValidationStats(
        mean=mean, std=std, min=min(scores), max=max(scores), count=len(scores)
    )
