"""Errors raised by the resampled evaluation workflow."""


class EvaluationError(Exception):
    """Base class for every error the evaluation workflow raises."""


class InsufficientDataError(EvaluationError):
    """Raised when a split or fold leaves one side empty or a record lacks a formula field."""


class InvalidConfigurationError(EvaluationError):
    """Raised for out-of-range settings, detected before any model is fitted."""


class EmptySummaryError(EvaluationError):
    """Raised when a best configuration is requested from an empty summary."""


class ModelFitError(EvaluationError):
    """Raised when a model family fails to fit or predict on one fold.

    Carries the offending hyperparameter combination and fold index so the
    caller can tell which configuration failed.
    """

    def __init__(self, message: str, params: dict | None = None, fold: int | None = None):
        super().__init__(message)
        self.params = dict(params or {})
        self.fold = fold

    def __str__(self):
        return f"{self.args[0]} (params={self.params}, fold={self.fold})"
