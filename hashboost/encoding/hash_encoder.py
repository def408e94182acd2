"""
Deterministic feature hashing for categorical values.

A ``HashEncoder`` maps any scalar to a one-hot vector of fixed width
(``bucket_count``) without ever seeing the full vocabulary:

  1. ``normalize_value()`` renders the value as a canonical string.
  2. MurmurHash3 x86-32 (``mmh3``) hashes that string with ``hash_seed``.
  3. ``abs(hash) % bucket_count`` picks the hot index.

Determinism contract
--------------------
Two encoders with equal ``HashEncoderConfig`` produce identical vectors for
inputs that normalise to the same string — across processes, machines and
time. Nothing else (no vocabulary, no fitted state) is needed to reproduce a
training-time feature vector at inference time, which is why the persisted
encoder config is only three fields.

The hashed key is the UTF-8 encoding of the normalised string. For ASCII
keys this matches JavaScript MurmurHash3 ports that hash the low byte of
each UTF-16 code unit; for non-ASCII keys it does not, and models trained
here are the reference for how such values bucket.

Normalisation is part of that contract. Changing any sentinel token or the
number rendering silently re-buckets every previously trained model, so the
rules below are frozen:

  None / missing        -> "__NULL__"
  True / False          -> "__TRUE__" / "__FALSE__"
  NaN, +inf, -inf       -> "__NaN__", "__INFINITY__", "__NEGATIVE_INFINITY__"
  other numbers         -> shortest round-trip decimal, ECMAScript style
                           (1.0 -> "1", 1e-7 -> "1e-7", 0.00001 -> "0.00001")
  strings               -> stripped; empty after strip -> "__EMPTY__"
"""

from __future__ import annotations

import logging
import math
import numbers
from decimal import Decimal
from typing import Any, Iterable

import mmh3
import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from hashboost.exceptions import InvalidArgument

logger = logging.getLogger(__name__)

DEFAULT_HASH_SEED = 42
LARGE_BUCKET_COUNT = 1_000_000

NULL_TOKEN = "__NULL__"
TRUE_TOKEN = "__TRUE__"
FALSE_TOKEN = "__FALSE__"
NAN_TOKEN = "__NaN__"
POS_INF_TOKEN = "__INFINITY__"
NEG_INF_TOKEN = "__NEGATIVE_INFINITY__"
EMPTY_TOKEN = "__EMPTY__"


# ── Value normalisation ───────────────────────────────────────────────────────


def _format_float(v: float) -> str:
    """Render a finite float the way ECMAScript ``Number#toString`` does."""
    if v == 0.0:
        return "0"
    sign = "-" if v < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(v))).as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    stripped = digits.rstrip("0")
    exponent += len(digits) - len(stripped)
    digits = stripped
    k = len(digits)
    n = exponent + k  # value == 0.<digits> * 10**n

    if k <= n <= 21:
        body = digits + "0" * (n - k)
    elif 0 < n <= 21:
        body = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        body = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        body = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + body


def normalize_value(value: Any) -> str:
    """Return the canonical string that gets hashed for ``value``.

    Shared by ``HashEncoder`` and ``FeatureAnalyzer`` so that cardinality
    counting and encoding agree on what counts as "the same value".
    """
    if value is None:
        return NULL_TOKEN

    if isinstance(value, (bool, np.bool_)):
        return TRUE_TOKEN if value else FALSE_TOKEN

    if isinstance(value, numbers.Integral):
        return str(int(value))

    if isinstance(value, numbers.Real):
        v = float(value)
        if math.isnan(v):
            return NAN_TOKEN
        if v == math.inf:
            return POS_INF_TOKEN
        if v == -math.inf:
            return NEG_INF_TOKEN
        return _format_float(v)

    text = str(value).strip()
    return text if text else EMPTY_TOKEN


# ── Encoder ───────────────────────────────────────────────────────────────────


class HashEncoderConfig(BaseModel):
    """Everything needed to rebuild an encoder bit-for-bit.

    Serialised with camelCase aliases (``bucketCount``, ``hashSeed``,
    ``featureName``) — the layout of ``encoders.json``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    bucket_count: int = Field(alias="bucketCount")
    hash_seed: int = Field(default=DEFAULT_HASH_SEED, alias="hashSeed")
    feature_name: str = Field(default="unknown", alias="featureName")


class HashEncoder:
    """One-hot feature hashing encoder for a single categorical feature.

    Instances are immutable; equality and hashing follow the config.

    Example::

        enc = HashEncoder(bucket_count=4, feature_name="color")
        enc.encode("red")      # array([0., 0., 1., 0.], dtype=float32)
        enc.encode(" red ")    # identical vector
    """

    __slots__ = ("_config",)

    def __init__(
        self,
        bucket_count: int,
        hash_seed: int = DEFAULT_HASH_SEED,
        feature_name: str = "unknown",
    ) -> None:
        if (
            isinstance(bucket_count, bool)
            or not isinstance(bucket_count, numbers.Integral)
            or bucket_count <= 0
        ):
            raise InvalidArgument(
                f"bucketCount must be a positive integer, got: {bucket_count!r}"
            )
        if bucket_count > LARGE_BUCKET_COUNT:
            logger.warning(
                "HashEncoder(%s): bucketCount %d is very large; "
                "each encoded vector costs %d floats.",
                feature_name, bucket_count, bucket_count,
            )
        self._config = HashEncoderConfig(
            bucket_count=int(bucket_count),
            hash_seed=int(hash_seed),
            feature_name=feature_name,
        )

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def config(self) -> HashEncoderConfig:
        return self._config

    @property
    def bucket_count(self) -> int:
        return self._config.bucket_count

    @property
    def hash_seed(self) -> int:
        return self._config.hash_seed

    @property
    def feature_name(self) -> str:
        return self._config.feature_name

    @property
    def dimension(self) -> int:
        """Width of every vector this encoder returns."""
        return self._config.bucket_count

    def get_config(self) -> HashEncoderConfig:
        return self._config

    @classmethod
    def from_config(cls, config: HashEncoderConfig | dict[str, Any]) -> "HashEncoder":
        """Rebuild an encoder from a config object or its JSON dict."""
        if isinstance(config, dict):
            config = HashEncoderConfig.model_validate(config)
        return cls(config.bucket_count, config.hash_seed, config.feature_name)

    # ── Encoding ──────────────────────────────────────────────────────────────

    def bucket_index(self, value: Any) -> int:
        """Return the hot index for ``value`` (0 <= index < bucket_count)."""
        key = normalize_value(value)
        h = mmh3.hash(key, self._config.hash_seed & 0xFFFFFFFF, signed=False)
        return abs(h) % self._config.bucket_count

    def encode(self, value: Any) -> np.ndarray:
        """Encode one value as a fresh float32 one-hot vector."""
        vec = np.zeros(self._config.bucket_count, dtype=np.float32)
        vec[self.bucket_index(value)] = 1.0
        return vec

    def encode_batch(self, values: Iterable[Any]) -> list[np.ndarray]:
        """Element-wise ``encode``; output matches individual calls exactly."""
        return [self.encode(v) for v in values]

    def validate_determinism(self, test_value: Any, iterations: int = 100) -> bool:
        """Re-encode ``test_value`` ``iterations`` times and compare."""
        first = self.encode(test_value)
        return all(
            np.array_equal(first, self.encode(test_value)) for _ in range(iterations)
        )

    # ── Sizing helpers ────────────────────────────────────────────────────────

    @staticmethod
    def estimate_collision_probability(unique_values: int, bucket_count: int) -> float:
        """Birthday-paradox estimate of at least one collision.

        ``1 - exp(-k(k-1) / 2n)``; 0 for ``k <= 1`` and 1 once ``k >= n``.
        """
        k, n = unique_values, bucket_count
        if k <= 1:
            return 0.0
        if k >= n:
            return 1.0
        return 1.0 - math.exp(-(k * (k - 1)) / (2.0 * n))

    @staticmethod
    def suggest_bucket_count(
        unique_values: int,
        square_threshold: int = 1000,
        linear_multiplier: int = 20,
    ) -> int:
        """Bucket sizing rule: ``k**2`` up to the threshold, ``multiplier * k`` after."""
        if unique_values <= 1:
            return 1
        if unique_values <= square_threshold:
            return unique_values * unique_values
        return linear_multiplier * unique_values

    # ── Dunder ────────────────────────────────────────────────────────────────

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HashEncoder):
            return NotImplemented
        return self._config == other._config

    def __hash__(self) -> int:
        return hash(self._config)

    def __repr__(self) -> str:
        return (
            f"HashEncoder(bucketCount={self.bucket_count}, "
            f"hashSeed={self.hash_seed}, feature={self.feature_name})"
        )
