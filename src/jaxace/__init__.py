"""
JAXACE: one-particle bases for ACE-style descriptors, built on JAX.

Composable bases over a single particle's state (radial, scalar and
categorical factors, and their tensor products) with values, gradients and
exact reverse-mode adjoints for both, ready to be embedded in larger JAX
computations.
"""

from __future__ import annotations

__version__ = "0.1.0"

# Core contract and serialization
from .autodiff import (
    differentiable_evaluate,
    differentiable_evaluate_d,
    evaluate,
    evaluate_d,
    rrule,
)
from .basis import OneParticleBasis, read_dict, register_basis

# Concrete bases
from .discrete import SpeciesBasis1p

# Errors
from .exceptions import (
    BasisIndexError,
    DomainError,
    JaxaceError,
    StaleSpecificationError,
)
from .polys import ChebyshevRadialBasis
from .product import FusedEvaluation, ProductBasis, SpecTable
from .radial import RadialBasis1p
from .scalar import ScalarBasis1p

# States
from .states import Configuration, DState, State

__all__ = [
    # Version
    "__version__",
    # Core contract
    "OneParticleBasis",
    "read_dict",
    "register_basis",
    # Bases
    "ChebyshevRadialBasis",
    "RadialBasis1p",
    "ScalarBasis1p",
    "SpeciesBasis1p",
    "ProductBasis",
    "SpecTable",
    "FusedEvaluation",
    # States
    "State",
    "DState",
    "Configuration",
    # Differentiation
    "evaluate",
    "evaluate_d",
    "rrule",
    "differentiable_evaluate",
    "differentiable_evaluate_d",
    # Errors
    "JaxaceError",
    "BasisIndexError",
    "StaleSpecificationError",
    "DomainError",
]
