"""
Exception hierarchy for JAXACE.
"""

from __future__ import annotations


class JaxaceError(Exception):
    """Base class for all errors raised by jaxace."""

    pass


class BasisIndexError(JaxaceError, IndexError):
    """Raised when a spec entry is not admissible for a basis."""

    pass


class StaleSpecificationError(JaxaceError, ValueError):
    """Raised when a spec/index table no longer matches the sub-bases it indexes."""

    pass


class DomainError(JaxaceError, ValueError):
    """Raised when a state lies outside the domain where a derivative is defined."""

    pass
