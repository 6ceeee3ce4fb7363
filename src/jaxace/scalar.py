"""
Scalar one-particle basis ``P_k(x)`` for a scalar state field.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import jax.numpy as jnp

from .basis import SingleIndexBasis1p, read_dict, register_basis
from .states import DState, State

DEFAULT_VARSYM = "x"
DEFAULT_IDXSYM = "k"


@register_basis("jaxace.ScalarBasis1p")
class ScalarBasis1p(SingleIndexBasis1p):
    """
    One-particle basis ``P_k(X.x)`` over a scalar float field.

    Parameters
    ----------
    P : scalar polynomial basis
        Same contract as the radial collaborator of
        :class:`jaxace.radial.RadialBasis1p`.
    varsym : str
        Scalar state field (default ``"x"``).
    idxsym : str
        Index symbol (default ``"k"``).
    """

    def __init__(self, P: Any, varsym: str = DEFAULT_VARSYM, idxsym: str = DEFAULT_IDXSYM):
        self.P = P
        self.varsym = varsym
        self.idxsym = idxsym

    def __len__(self) -> int:
        return len(self.P)

    def evaluate(self, X: State) -> jnp.ndarray:
        return self.P.evaluate(X[self.varsym])

    def evaluate_d(self, X: State) -> DState:
        return DState({self.varsym: self.P.evaluate_d(X[self.varsym])})

    def pullback(self, X: State, w: jnp.ndarray) -> DState:
        return DState({self.varsym: self.P.pullback(X[self.varsym], w)})

    def pullback_d(self, X: State, w: DState) -> DState:
        if self.varsym not in w:
            return DState.zero()
        return DState({self.varsym: self.P.pullback_d(X[self.varsym], w[self.varsym])})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScalarBasis1p):
            return NotImplemented
        return self.P == other.P and self.varsym == other.varsym and self.idxsym == other.idxsym

    def __repr__(self) -> str:
        return f"ScalarBasis1p(P={self.P!r}, varsym={self.varsym!r}, idxsym={self.idxsym!r})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "__id__": self._serial_id,
            "P": self.P.to_dict(),
            "varsym": self.varsym,
            "idxsym": self.idxsym,
        }

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> ScalarBasis1p:
        return cls(
            read_dict(config["P"]),
            varsym=config.get("varsym", DEFAULT_VARSYM),
            idxsym=config.get("idxsym", DEFAULT_IDXSYM),
        )
