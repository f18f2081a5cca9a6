"""
Error kinds raised by the erase pipeline.

Every error derives from `AutokorrekturError` and from the builtin category it
belongs to, so callers that only know about `ValueError`/`RuntimeError` still
catch them.
"""

from __future__ import annotations


class AutokorrekturError(Exception):
    pass


class InvalidImage(AutokorrekturError, ValueError):
    """Input image is missing, unreadable or has a zero-sized dimension."""


class ModelContractViolation(AutokorrekturError, ValueError):
    """A model produced (or was given) tensors that break its interface contract."""


class DetectionParseError(AutokorrekturError, ValueError):
    """Raw detection output, or one row of it, could not be interpreted."""


class InferenceEngineError(AutokorrekturError, RuntimeError):
    """The external inference engine itself failed."""

    def __init__(self, role: str, message: str):
        super().__init__(f"{role} model: {message}")
        self.role = role
