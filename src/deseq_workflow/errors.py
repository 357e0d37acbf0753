"""Exception and warning types raised by the workflow."""

from __future__ import annotations


class DeseqWorkflowError(Exception):
    """Base class for workflow errors."""


class InputMismatch(DeseqWorkflowError, ValueError):
    """Sample metadata and count matrix do not reconcile.

    Raised before any model fitting: duplicated identifiers, count columns
    without metadata (or the reverse), or metadata values outside the
    declared levels of a design factor.
    """


class InvalidContrast(DeseqWorkflowError, KeyError):
    """A requested coefficient, contrast or model comparison does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""


class StageOrderError(DeseqWorkflowError, RuntimeError):
    """A fitting stage was invoked before the stage it depends on."""


class DegenerateFitWarning(UserWarning):
    """Some genes could not be fitted; their outputs are reported as NA."""
