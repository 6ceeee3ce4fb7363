"""
Scalar radial polynomial bases.

These are functions of a single distance ``r``. They are not one-particle
bases themselves; adapters such as :class:`jaxace.radial.RadialBasis1p`
turn them into bases over particle states.

References
----------
    R. Drautz, PRB 99 (2019) 014104
    N. Artrith, A. Urban, and G. Ceder, PRB 96 (2017) 014112
"""

from __future__ import annotations

from typing import Any

import jax
import jax.numpy as jnp

from .basis import register_basis


@register_basis("jaxace.ChebyshevRadialBasis")
class ChebyshevRadialBasis:
    """
    Chebyshev polynomials in a rescaled distance, with an optional cutoff envelope.

    ``R_n(r) = T_n(x(r)) * f_c(r)`` for ``n = 0, ..., maxn - 1`` where

        x(r)   = (2*r - rin - rcut) / (rcut - rin)
        f_c(r) = 0.5 * [cos(pi*r/rcut) + 1]   for r < rcut, 0 otherwise

    Parameters
    ----------
    maxn : int
        Number of radial functions.
    rin : float
        Inner end of the rescaling interval.
    rcut : float
        Cutoff radius; outer end of the rescaling interval.
    envelope : bool
        If True (default), multiply by the cosine cutoff envelope so all
        functions vanish smoothly at ``rcut``.

    Examples
    --------
    >>> R = ChebyshevRadialBasis(maxn=6, rin=0.0, rcut=5.0)
    >>> R.evaluate(1.5).shape
    (6,)
    """

    def __init__(self, maxn: int, rin: float = 0.0, rcut: float = 5.0, envelope: bool = True):
        if maxn < 1:
            raise ValueError(f"maxn must be >= 1, got {maxn}")
        if not 0.0 <= rin < rcut:
            raise ValueError(f"Expected 0 <= rin < rcut, got rin={rin}, rcut={rcut}")
        self.maxn = int(maxn)
        self.rin = float(rin)
        self.rcut = float(rcut)
        self.envelope = bool(envelope)

        self._evaluate = jax.jit(self._values)
        self._evaluate_d = jax.jit(jax.jacfwd(self._values))
        self._evaluate_dd = jax.jit(jax.jacfwd(jax.jacfwd(self._values)))

    def _values(self, r: jnp.ndarray) -> jnp.ndarray:
        x = (2.0 * r - self.rin - self.rcut) / (self.rcut - self.rin)
        T = [jnp.ones_like(x), x]
        for _ in range(2, self.maxn):
            T.append(2.0 * x * T[-1] - T[-2])
        P = jnp.stack(T[: self.maxn])
        if self.envelope:
            fc = jnp.where(r < self.rcut, 0.5 * (jnp.cos(jnp.pi * r / self.rcut) + 1.0), 0.0)
            P = P * fc
        return P

    @staticmethod
    def _as_radius(r: Any) -> jnp.ndarray:
        return jnp.asarray(r, dtype=jnp.result_type(float))

    def __len__(self) -> int:
        return self.maxn

    def evaluate(self, r: float) -> jnp.ndarray:
        """Values ``R_n(r)``, shape ``(maxn,)``."""
        return self._evaluate(self._as_radius(r))

    def evaluate_d(self, r: float) -> jnp.ndarray:
        """First derivatives ``R_n'(r)``, shape ``(maxn,)``."""
        return self._evaluate_d(self._as_radius(r))

    def evaluate_dd(self, r: float) -> jnp.ndarray:
        """Second derivatives ``R_n''(r)``, shape ``(maxn,)``."""
        return self._evaluate_dd(self._as_radius(r))

    def pullback(self, r: float, w: jnp.ndarray) -> jnp.ndarray:
        """Adjoint of :meth:`evaluate`: ``sum_n w_n R_n'(r)`` (a scalar)."""
        return jnp.dot(jnp.real(jnp.asarray(w)), self.evaluate_d(r))

    def pullback_d(self, r: float, w: jnp.ndarray) -> jnp.ndarray:
        """Adjoint of :meth:`evaluate_d`: ``sum_n w_n R_n''(r)`` (a scalar)."""
        return jnp.dot(jnp.real(jnp.asarray(w)), self.evaluate_dd(r))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChebyshevRadialBasis):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"ChebyshevRadialBasis(maxn={self.maxn}, rin={self.rin}, "
            f"rcut={self.rcut}, envelope={self.envelope})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "__id__": self._serial_id,
            "maxn": self.maxn,
            "rin": self.rin,
            "rcut": self.rcut,
            "envelope": self.envelope,
        }

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> ChebyshevRadialBasis:
        """Reconstruct from :meth:`to_dict` output."""
        return cls(
            maxn=config["maxn"],
            rin=config["rin"],
            rcut=config["rcut"],
            envelope=config.get("envelope", True),
        )
