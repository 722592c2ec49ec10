"""
Exception types raised by the grnfinder pipeline.

Hard stops (empty selections, no fitted models, no surviving modules) are
raised to the caller of the stage that produced them. Per-gene problems
(InsufficientDataError) are recoverable: the model fitter catches them,
logs the gene and reports it in ``FitResult.skipped``.
"""

from __future__ import annotations

__all__ = [
    'GRNError',
    'EmptySelectionError',
    'EmptyMotifMappingError',
    'MissingSequenceError',
    'InsufficientDataError',
    'NoModelsError',
    'NoModulesError',
    'OrphanEdgeError',
    'StageOrderError',
    'ConfigError',
]


class GRNError(Exception):
    """Base class for all grnfinder errors."""
    pass


class EmptySelectionError(GRNError):
    """Raised when a region filter leaves no regions."""
    pass


class EmptyMotifMappingError(GRNError):
    """Raised when no motif maps to any of the requested regulators."""
    pass


class MissingSequenceError(GRNError, KeyError):
    """Raised when a genome has no sequence for a requested chromosome."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ''


class InsufficientDataError(GRNError):
    """Raised when a single gene has too little data to fit a model."""
    pass


class NoModelsError(GRNError):
    """Raised when model fitting produced no model for any gene."""
    pass


class NoModulesError(GRNError):
    """Raised when module thresholds leave zero regulator modules."""
    pass


class OrphanEdgeError(GRNError):
    """Raised when a graph edge has no fitted model term backing it."""
    pass


class StageOrderError(GRNError):
    """Raised when a pipeline stage runs before its prerequisites."""
    pass


class ConfigError(GRNError):
    """Raised for unreadable or invalid configuration files."""
    pass
