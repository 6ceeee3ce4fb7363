"""
Reverse-mode rules for one-particle bases.

:func:`rrule` returns an output together with its pullback closure, for
code that composes adjoints by hand. :func:`differentiable_evaluate` and
:func:`differentiable_evaluate_d` wrap a basis as ``jax.custom_vjp``
functions of a :class:`~jaxace.states.State`, so ``jax.grad`` / ``jax.vjp``
of any surrounding JAX computation uses the basis' exact adjoints instead
of tracing through its internals.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import jax
import jax.numpy as jnp

from .basis import OneParticleBasis
from .states import DState, State


def evaluate(basis: OneParticleBasis, X: State) -> jnp.ndarray:
    """Functional form of ``basis.evaluate(X)``."""
    return basis.evaluate(X)


def evaluate_d(basis: OneParticleBasis, X: State) -> DState:
    """Functional form of ``basis.evaluate_d(X)``."""
    return basis.evaluate_d(X)


_RRULES = {
    evaluate: "rrule_evaluate",
    evaluate_d: "rrule_evaluate_d",
}


def rrule(fn: Callable, basis: OneParticleBasis, X: State) -> tuple[Any, Callable]:
    """
    Output of ``fn(basis, X)`` and its pullback.

    Parameters
    ----------
    fn : callable
        :func:`evaluate` or :func:`evaluate_d`.
    basis : OneParticleBasis
        The basis.
    X : State
        Point of evaluation.

    Returns
    -------
    out : jnp.ndarray or DState
        ``fn(basis, X)``.
    pullback : callable
        Maps an output cotangent to the cotangent of ``X`` (a DState).

    Raises
    ------
    ValueError
        If ``fn`` has no reverse rule.
    """
    try:
        name = _RRULES[fn]
    except KeyError:
        raise ValueError(
            f"No reverse rule for {fn!r}. Available: evaluate, evaluate_d"
        ) from None
    return getattr(basis, name)(X)


def _as_cotangent(X: State, g: DState) -> State:
    """
    Reshape a DState into a State-structured cotangent for ``custom_vjp``.

    Fields the DState does not carry, and integer fields, get ``None``
    (zero cotangent).
    """
    fields = {}
    for name, value in X.items():
        if name in g and jnp.issubdtype(value.dtype, jnp.inexact):
            fields[name] = jnp.broadcast_to(g[name], value.shape).astype(value.dtype)
        else:
            fields[name] = None
    return State._from_raw(fields)


def differentiable_evaluate(basis: OneParticleBasis) -> Callable[[State], jnp.ndarray]:
    """
    ``X -> basis.evaluate(X)`` with the basis' own adjoint as its VJP.

    Examples
    --------
    >>> f = differentiable_evaluate(basis)
    >>> g = jax.grad(lambda rr: jnp.dot(w, f(State(rr=rr, mu=8))))(rr)
    """

    @jax.custom_vjp
    def f(X: State) -> jnp.ndarray:
        return basis.evaluate(X)

    def f_fwd(X: State):
        return basis.evaluate(X), X

    def f_bwd(X: State, w: jnp.ndarray):
        return (_as_cotangent(X, basis.pullback(X, w)),)

    f.defvjp(f_fwd, f_bwd)
    return f


def differentiable_evaluate_d(basis: OneParticleBasis) -> Callable[[State], DState]:
    """
    ``X -> basis.evaluate_d(X)`` with the basis' ``pullback_d`` as its VJP.

    Needed when a loss depends on basis gradients (e.g. forces) and is
    itself differentiated with respect to the state.
    """

    @jax.custom_vjp
    def f(X: State) -> DState:
        return basis.evaluate_d(X)

    def f_fwd(X: State):
        return basis.evaluate_d(X), X

    def f_bwd(X: State, w: DState):
        return (_as_cotangent(X, basis.pullback_d(X, w)),)

    f.defvjp(f_fwd, f_bwd)
    return f
