"""
Radial one-particle basis ``R_n(|rr|)``.

Turns a scalar radial basis into a one-particle basis over a vector-valued
state field. Values are scalar, gradients are vectors along the unit
displacement, and both adjoints apply the chain rule through the norm.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import jax
import jax.numpy as jnp

from .basis import SingleIndexBasis1p, read_dict, register_basis
from .exceptions import DomainError
from .states import DState, State

DEFAULT_VARSYM = "rr"
DEFAULT_IDXSYM = "n"


def _check_radius(r: jnp.ndarray, varsym: str) -> None:
    try:
        at_origin = bool(r == 0)
    except jax.errors.ConcretizationTypeError:
        # symbolic radius under tracing, nothing to check
        return
    if at_origin:
        raise DomainError(
            f"Gradient of a radial basis is undefined at |{varsym}| = 0 "
            "(the unit vector rr/r does not exist)"
        )


@register_basis("jaxace.RadialBasis1p")
class RadialBasis1p(SingleIndexBasis1p):
    """
    One-particle basis ``R_n(r)`` with ``r = |X.rr|``.

    Parameters
    ----------
    R : radial basis
        Scalar basis exposing ``len``, ``evaluate(r)``, ``evaluate_d(r)``,
        ``pullback(r, w)``, ``pullback_d(r, w)`` and ``to_dict``, e.g.
        :class:`jaxace.polys.ChebyshevRadialBasis`.
    varsym : str
        Vector state field the basis reads (default ``"rr"``).
    idxsym : str
        Index symbol of the radial functions (default ``"n"``).

    Notes
    -----
    ``evaluate`` is defined at ``r = 0``. ``evaluate_d`` and both adjoints
    need the unit vector ``rr / r`` and raise :class:`DomainError` there.
    """

    def __init__(self, R: Any, varsym: str = DEFAULT_VARSYM, idxsym: str = DEFAULT_IDXSYM):
        self.R = R
        self.varsym = varsym
        self.idxsym = idxsym

    def __len__(self) -> int:
        return len(self.R)

    def _polar(self, X: State) -> tuple[jnp.ndarray, jnp.ndarray]:
        rr = X[self.varsym]
        r = jnp.linalg.norm(rr)
        _check_radius(r, self.varsym)
        return r, rr / r

    def evaluate(self, X: State) -> jnp.ndarray:
        return self.R.evaluate(jnp.linalg.norm(X[self.varsym]))

    def evaluate_d(self, X: State) -> DState:
        r, rhat = self._polar(X)
        dRdr = self.R.evaluate_d(r)
        return DState({self.varsym: dRdr[:, None] * rhat})

    def evaluate_ed(self, X: State) -> tuple[jnp.ndarray, DState]:
        r, rhat = self._polar(X)
        dRdr = self.R.evaluate_d(r)
        return self.R.evaluate(r), DState({self.varsym: dRdr[:, None] * rhat})

    def pullback(self, X: State, w: jnp.ndarray) -> DState:
        r, rhat = self._polar(X)
        a = self.R.pullback(r, w)
        return DState({self.varsym: a * rhat})

    def _pullback_d(
        self, r: jnp.ndarray, rhat: jnp.ndarray, dRdr: jnp.ndarray, w: DState
    ) -> DState:
        if self.varsym not in w:
            return DState.zero()
        wv = jnp.real(w[self.varsym])
        # split each cotangent row into its radial and tangential parts
        w_rhat = wv @ rhat
        w2 = wv - w_rhat[:, None] * rhat
        a = self.R.pullback_d(r, w_rhat)
        # rhat itself depends on rr: d(rhat)/d(rr) = (I - rhat rhat^T) / r
        b = jnp.sum(dRdr[:, None] * w2, axis=0) / r
        return DState({self.varsym: a * rhat + b})

    def pullback_d(self, X: State, w: DState) -> DState:
        r, rhat = self._polar(X)
        return self._pullback_d(r, rhat, self.R.evaluate_d(r), w)

    def rrule_evaluate_d(self, X: State) -> tuple[DState, Callable[[DState], DState]]:
        r, rhat = self._polar(X)
        dRdr = self.R.evaluate_d(r)
        dB = DState({self.varsym: dRdr[:, None] * rhat})
        return dB, lambda w: self._pullback_d(r, rhat, dRdr, w)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RadialBasis1p):
            return NotImplemented
        return self.R == other.R and self.varsym == other.varsym and self.idxsym == other.idxsym

    def __repr__(self) -> str:
        return f"RadialBasis1p(R={self.R!r}, varsym={self.varsym!r}, idxsym={self.idxsym!r})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "__id__": self._serial_id,
            "R": self.R.to_dict(),
            "varsym": self.varsym,
            "idxsym": self.idxsym,
        }

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> RadialBasis1p:
        return cls(
            read_dict(config["R"]),
            varsym=config.get("varsym", DEFAULT_VARSYM),
            idxsym=config.get("idxsym", DEFAULT_IDXSYM),
        )
