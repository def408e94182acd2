"""
Error taxonomy for hashboost.

Every error raised deliberately by the library derives from
``HashBoostError`` and from the builtin that generic callers would already
catch (``ValueError``, ``RuntimeError``, ``FileNotFoundError``).

Categories
----------
Input errors      : ``InvalidArgument``, ``ValidationError``, ``UnknownClass``.
                    The caller must fix the input; nothing is retried.
Lifecycle errors  : ``NotTrained``, ``ModelNotFound``, ``MetadataMissing``,
                    ``ArtifactMissing``. Operations were called out of order
                    or a model directory is incomplete.

Degraded-but-recoverable data (null numerics, a missing categorical at
inference time) is NOT an error: it is zero-filled and logged as a warning.
"""

from __future__ import annotations


class HashBoostError(Exception):
    """Base class for all hashboost errors."""


class InvalidArgument(HashBoostError, ValueError):
    """A constructor or function parameter is out of range (e.g. bucket count <= 0)."""


class ValidationError(HashBoostError, ValueError):
    """Input data or configuration is malformed, incomplete, or inconsistent."""


class UnknownClass(HashBoostError, ValueError):
    """A target label is not in the sorted class list seen during analysis."""

    def __init__(self, label: str, classes: list[str] | None = None) -> None:
        self.label = label
        self.classes = list(classes or [])
        super().__init__(f"Unknown class: {label!r} (known classes: {self.classes})")


class NotTrained(HashBoostError, RuntimeError):
    """An operation needs a trained model but ``train()`` has not succeeded yet."""


class ModelNotFound(HashBoostError, FileNotFoundError):
    """The model directory does not exist."""


class MetadataMissing(HashBoostError, FileNotFoundError):
    """``metadata.json`` is absent from a model directory."""


class ArtifactMissing(HashBoostError, FileNotFoundError):
    """A tree artifact (``model.json`` or ``models/<class>.json``) is absent."""
