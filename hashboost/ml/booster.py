"""
Gradient-boosted tree engine behind ``Trainer`` and ``Model``.

The rest of the package treats the tree engine as an opaque component with a
small surface (``fit`` / ``predict_single`` / ``predict_batch`` /
``to_json`` / ``from_json``) and XGBoost-style hyper-parameter names, which
are what users configure and what ``metadata.json`` records. This module
translates those names onto LightGBM.

Objective mapping
-----------------
  binary:logistic        -> binary        (output: P(label == 1))
  reg:squarederror       -> regression
  reg:pseudohubererror   -> huber
  reg:gamma              -> gamma
  reg:tweedie            -> tweedie
  reg:logistic           -> cross_entropy
  multi:softprob         -> multiclass    (output: one probability per class)
  multi:softmax          -> multiclass    (same output; argmax is the caller's job)

Parameter mapping
-----------------
  eta -> learning_rate, max_depth -> max_depth (and num_leaves = 2**max_depth),
  min_child_weight -> min_sum_hessian_in_leaf, gamma -> min_gain_to_split,
  subsample -> bagging_fraction (+ bagging_freq=1), colsample_bytree ->
  feature_fraction, alpha -> lambda_l1, lambda -> lambda_l2, nthread ->
  num_threads, seed -> seed.

Datasets here are often tiny (a handful of rows), so LightGBM's
``min_data_in_leaf`` / ``min_data_in_bin`` floors are lowered to 1 and
feature pre-filtering is disabled; otherwise one-hot columns with a single
positive row would be dropped before training.

Artifact
--------
``to_json()`` returns a JSON-safe dict::

    {"format": "lightgbm", "objective": "binary:logistic", "num_class": null,
     "params": {...xgboost-style...}, "model": "<LightGBM model string>"}
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import numpy as np

from hashboost.config import BoosterConfig
from hashboost.exceptions import InvalidArgument, NotTrained, ValidationError

logger = logging.getLogger(__name__)

ARTIFACT_FORMAT = "lightgbm"

OBJECTIVES: dict[str, str] = {
    "binary:logistic":      "binary",
    "reg:squarederror":     "regression",
    "reg:pseudohubererror": "huber",
    "reg:gamma":            "gamma",
    "reg:tweedie":          "tweedie",
    "reg:logistic":         "cross_entropy",
    "multi:softprob":       "multiclass",
    "multi:softmax":        "multiclass",
}

# Task defaults applied underneath user-supplied values.
CLASSIFICATION_DEFAULTS: dict[str, Any] = {
    "eta":              0.1,
    "max_depth":        6,
    "num_boost_round":  50,
    "subsample":        1.0,
    "colsample_bytree": 1.0,
    "seed":             42,
}
REGRESSION_DEFAULTS: dict[str, Any] = {
    "eta":              0.05,
    "max_depth":        5,
    "num_boost_round":  100,
    "subsample":        0.8,
    "colsample_bytree": 0.8,
    "seed":             42,
}

_MAX_NUM_LEAVES = 131_072


def is_multiclass_objective(objective: Optional[str]) -> bool:
    return bool(objective) and objective.startswith("multi:")


def resolve_params(
    config: BoosterConfig | Mapping[str, Any] | None,
    task_type: str,
    num_classes: int = 0,
) -> dict[str, Any]:
    """Merge user hyper-parameters over the task defaults.

    The objective defaults to ``multi:softprob`` for classification with more
    than two classes, ``binary:logistic`` for other classification and
    ``reg:squarederror`` for regression.

    Args:
        config:      ``BoosterConfig``, a plain dict of XGBoost-style names,
                     or None.
        task_type:   ``"classification"`` or ``"regression"``.
        num_classes: Number of target classes (classification only).

    Returns:
        Dict of XGBoost-style parameters with ``None`` values dropped.
    """
    if config is None:
        user: dict[str, Any] = {}
    elif isinstance(config, BoosterConfig):
        user = config.model_dump(by_alias=True, exclude_none=True)
    else:
        user = BoosterConfig.model_validate(dict(config)).model_dump(
            by_alias=True, exclude_none=True
        )

    if task_type == "regression":
        params = {**REGRESSION_DEFAULTS, **user}
        params.setdefault("objective", "reg:squarederror")
    else:
        params = {**CLASSIFICATION_DEFAULTS, **user}
        params.setdefault(
            "objective", "multi:softprob" if num_classes > 2 else "binary:logistic"
        )
    return params


def _to_lightgbm(params: Mapping[str, Any], num_class: Optional[int]) -> tuple[dict[str, Any], int]:
    """Translate XGBoost-style params; returns ``(lgb_params, num_boost_round)``."""
    objective = params.get("objective", "binary:logistic")
    if objective not in OBJECTIVES:
        raise InvalidArgument(
            f"Unsupported objective {objective!r}; expected one of {sorted(OBJECTIVES)}"
        )

    lgb_params: dict[str, Any] = {
        "objective":          OBJECTIVES[objective],
        "verbose":            -1,
        "deterministic":      True,
        "min_data_in_leaf":   params.get("min_child_samples", 1),
        "min_data_in_bin":    1,
        "feature_pre_filter": False,
    }
    if OBJECTIVES[objective] == "multiclass":
        if not num_class or num_class < 2:
            raise InvalidArgument(f"Objective {objective!r} requires num_class >= 2")
        lgb_params["num_class"] = int(num_class)

    if "eta" in params:
        lgb_params["learning_rate"] = params["eta"]
    if "max_depth" in params:
        depth = int(params["max_depth"])
        lgb_params["max_depth"] = depth
        lgb_params["num_leaves"] = max(2, min(2 ** depth, _MAX_NUM_LEAVES))
    if "min_child_weight" in params:
        lgb_params["min_sum_hessian_in_leaf"] = params["min_child_weight"]
    if "gamma" in params:
        lgb_params["min_gain_to_split"] = params["gamma"]
    if params.get("subsample", 1.0) < 1.0:
        lgb_params["bagging_fraction"] = params["subsample"]
        lgb_params["bagging_freq"] = 1
    if "colsample_bytree" in params:
        lgb_params["feature_fraction"] = params["colsample_bytree"]
    if "alpha" in params:
        lgb_params["lambda_l1"] = params["alpha"]
    if "lambda" in params:
        lgb_params["lambda_l2"] = params["lambda"]
    if "seed" in params:
        lgb_params["seed"] = params["seed"]
    if "nthread" in params:
        lgb_params["num_threads"] = params["nthread"]

    return lgb_params, int(params.get("num_boost_round", 50))


class GradientBoostedTrees:
    """One LightGBM booster configured with XGBoost-style parameters.

    Args:
        params:    ``BoosterConfig`` or dict of XGBoost-style names. Must carry
                   an ``objective`` (``resolve_params`` fills one in).
        num_class: Class count for ``multi:*`` objectives.

    Raises:
        InvalidArgument: Unknown objective, or ``multi:*`` without num_class.
    """

    def __init__(
        self,
        params: BoosterConfig | Mapping[str, Any],
        num_class: Optional[int] = None,
    ) -> None:
        if isinstance(params, BoosterConfig):
            params = params.model_dump(by_alias=True, exclude_none=True)
        self._params: dict[str, Any] = dict(params)
        self._num_class = num_class
        self._lgb_params, self._num_rounds = _to_lightgbm(self._params, num_class)
        self._booster = None  # lgb.Booster; None until fit()

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def is_fitted(self) -> bool:
        """True after fit() (or from_json()) has produced a booster."""
        return self._booster is not None

    @property
    def objective(self) -> str:
        return self._params.get("objective", "binary:logistic")

    @property
    def num_class(self) -> Optional[int]:
        return self._num_class

    @property
    def params(self) -> dict[str, Any]:
        return dict(self._params)

    # ── Training ──────────────────────────────────────────────────────────────

    def fit(self, X: np.ndarray, y: np.ndarray) -> "GradientBoostedTrees":
        """Train a fresh booster on ``X`` (2-D) and labels ``y``.

        Raises:
            ValidationError: Empty or shape-mismatched input.
        """
        import lightgbm as lgb

        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if X.ndim != 2 or X.shape[0] == 0:
            raise ValidationError(f"Training matrix must be 2-D and non-empty, got shape {X.shape}")
        if X.shape[0] != y.shape[0]:
            raise ValidationError(
                f"Feature rows ({X.shape[0]}) and labels ({y.shape[0]}) differ in length"
            )

        dataset_params = {
            k: self._lgb_params[k]
            for k in ("min_data_in_bin", "feature_pre_filter", "verbose")
        }
        dtrain = lgb.Dataset(X, label=y, params=dataset_params, free_raw_data=False)
        self._booster = lgb.train(
            self._lgb_params,
            dtrain,
            num_boost_round=self._num_rounds,
            callbacks=[lgb.log_evaluation(period=-1)],
        )
        logger.debug(
            "Fitted %s booster on %d rows x %d features (%d rounds)",
            self.objective, X.shape[0], X.shape[1], self._num_rounds,
        )
        return self

    # ── Inference ─────────────────────────────────────────────────────────────

    def predict_batch(self, X: np.ndarray) -> list:
        """Predict every row of ``X``.

        Returns:
            One float per row, or (``multi:*``) one list of class
            probabilities per row.

        Raises:
            NotTrained: If the booster has not been fitted or loaded.
        """
        if self._booster is None:
            raise NotTrained("GradientBoostedTrees must be fitted before predicting.")

        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.shape[0] == 0:
            return []
        raw = self._booster.predict(X)
        if raw.ndim == 2:
            return [[float(p) for p in row] for row in raw]
        return [float(p) for p in raw]

    def predict_single(self, x: np.ndarray) -> float | list[float]:
        """Predict one feature vector."""
        return self.predict_batch(np.asarray(x).reshape(1, -1))[0]

    # ── Persistence ───────────────────────────────────────────────────────────

    def to_json(self) -> dict[str, Any]:
        """Serialise the fitted booster to a JSON-safe dict.

        Raises:
            NotTrained: If the booster has not been fitted.
        """
        if self._booster is None:
            raise NotTrained("Cannot serialise an unfitted GradientBoostedTrees.")
        return {
            "format":    ARTIFACT_FORMAT,
            "objective": self.objective,
            "num_class": self._num_class,
            "params":    self._params,
            "model":     self._booster.model_to_string(),
        }

    @classmethod
    def from_json(cls, artifact: Mapping[str, Any]) -> "GradientBoostedTrees":
        """Rebuild a fitted instance from ``to_json()`` output.

        Raises:
            ValidationError: Unknown format or missing model payload.
        """
        import lightgbm as lgb

        if artifact.get("format") != ARTIFACT_FORMAT or "model" not in artifact:
            raise ValidationError(
                f"Unrecognised tree artifact (format={artifact.get('format')!r})"
            )
        params = dict(artifact.get("params") or {})
        params.setdefault("objective", artifact.get("objective", "binary:logistic"))
        inst = cls(params, num_class=artifact.get("num_class"))
        inst._booster = lgb.Booster(model_str=artifact["model"])
        return inst

    def __repr__(self) -> str:
        state = "fitted" if self.is_fitted else "unfitted"
        return f"GradientBoostedTrees(objective={self.objective!r}, {state})"
