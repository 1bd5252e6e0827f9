"""
pmfis.errors

Exception types raised by pmfis.

  - ConfigurationError: a structural contract is violated (length mismatch,
    malformed rule, rule count out of range). Always a caller bug.
  - TrainerFailure: the retraining step of a reduction iteration failed.

Samples for which no rule fires are not errors: the engine emits NaN for them.
"""

from __future__ import annotations


class PmfisError(Exception):
    """Base class for all pmfis errors."""


class ConfigurationError(PmfisError, ValueError):
    pass


class TrainerFailure(PmfisError, RuntimeError):
    """
    Raised (or attached to a ReductionStep) when re-tuning a reduced system fails.
    """

    def __init__(self, message: str, iteration: int | None = None):
        super().__init__(message)
        self.iteration = iteration
