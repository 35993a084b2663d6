"""Exceptions raised by the pileup core.

Per-site conditions (:class:`MalformedSiteError`,
:class:`UnresolvedChromosomeError`, :class:`AlleleCollisionError`) are
recoverable: callers skip the site and keep going. The rest are fatal for
the worker that raised them.
"""

from __future__ import annotations

from typing import Optional


class PileupError(RuntimeError):
    """Base class for all scpileup errors."""


class AllocationError(PileupError, MemoryError):
    """Raised when a pool cannot hand out another element."""

    def __init__(self, message: str, *, pool: Optional[str] = None, size: int = 0) -> None:
        super().__init__(message)
        self.pool = pool
        self.size = int(size)


class MalformedSiteError(PileupError):
    """A variant record that cannot be represented as a bi-allelic SNP."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class UnresolvedChromosomeError(PileupError):
    """A variant record whose chromosome name could not be resolved."""


class SampleGroupError(PileupError):
    """Sample groups were configured in a way that breaks index lookups."""


class DuplicateSampleGroupError(SampleGroupError):
    pass


class ReentrantConfigurationError(SampleGroupError):
    pass


class AlleleCollisionError(PileupError):
    """Ref and alt resolve to the same base, so genotype classes collapse."""

    def __init__(self, message: str, *, base_idx: int) -> None:
        super().__init__(message)
        self.base_idx = int(base_idx)


class SerializationError(PileupError):
    """A formatter emitted fewer (or more) fields than the state requires."""
