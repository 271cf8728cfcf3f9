"""
Typed errors raised by the Aurora Router experiment lifecycle.

Routing never raises; these errors belong to the fail-closed experiment
path. Each carries the HTTP status the host application should answer with.
"""

from __future__ import annotations


class AuroraRouterError(Exception):
    """Base class for all Aurora Router errors."""

    http_status: int = 500


class ExperimentError(AuroraRouterError):
    """Base class for experiment configuration and lifecycle errors."""

    def __init__(self, message: str, experiment_id: str = "") -> None:
        super().__init__(message)
        self.experiment_id = experiment_id


class ValidationError(ExperimentError, ValueError):
    """Experiment configuration is invalid (bad weights, ranges, sample size)."""

    http_status = 400


class NotFoundError(ExperimentError, KeyError):
    """No experiment with the given id exists."""

    http_status = 404

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0]) if self.args else ""


class InvalidStateError(ExperimentError):
    """The requested status transition is not allowed."""

    http_status = 409


class DuplicateError(ExperimentError):
    """An experiment with the same id already exists."""

    http_status = 409
