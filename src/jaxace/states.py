"""
Particle states, gradient records and configurations.

A :class:`State` is an immutable record of named fields describing one
particle's local environment, e.g. a displacement ``rr`` and a species
``mu``. Derivatives with respect to a state are :class:`DState` records
that carry only the fields they differentiate; fields that are absent act
as zeros. A DState whose fields all share a leading axis is *batched*: row
``k`` is the gradient of basis function ``k``.

Both records are registered as JAX pytrees so that they can flow through
``jax.vjp`` / ``jax.grad`` and ``jax.custom_vjp`` rules.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class


def _expand(coeffs: jnp.ndarray, value: jnp.ndarray) -> jnp.ndarray:
    """Reshape leading-axis coefficients so they broadcast against ``value``."""
    coeffs = jnp.asarray(coeffs)
    return coeffs.reshape(coeffs.shape + (1,) * (jnp.ndim(value) - coeffs.ndim))


class _FieldRecord:
    """Shared plumbing for immutable mappings of field name -> array."""

    __slots__ = ("_fields",)

    def __init__(self, fields: Mapping[str, Any] | None = None, **kwargs: Any):
        merged = dict(fields or {})
        merged.update(kwargs)
        object.__setattr__(self, "_fields", {k: jnp.asarray(v) for k, v in merged.items()})

    @classmethod
    def _from_raw(cls, fields: dict[str, Any]):
        obj = object.__new__(cls)
        object.__setattr__(obj, "_fields", fields)
        return obj

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._fields[name]
        except KeyError:
            raise AttributeError(f"{type(self).__name__} has no field '{name}'") from None

    def __getitem__(self, name: str) -> jnp.ndarray:
        return self._fields[name]

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def get(self, name: str, default: Any = None) -> Any:
        return self._fields.get(name, default)

    @property
    def fields(self) -> tuple[str, ...]:
        """Names of the fields carried by this record."""
        return tuple(self._fields)

    def items(self):
        return self._fields.items()

    def tree_flatten(self):
        keys = tuple(sorted(self._fields))
        return tuple(self._fields[k] for k in keys), keys

    @classmethod
    def tree_unflatten(cls, keys, children):
        return cls._from_raw(dict(zip(keys, children)))

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v!r}" for k, v in self._fields.items())
        return f"{type(self).__name__}({inner})"


@register_pytree_node_class
class State(_FieldRecord):
    """
    Immutable state of a single particle.

    Parameters
    ----------
    fields : mapping, optional
        Field name -> value. Values are converted to ``jax.numpy`` arrays.
    **kwargs
        Additional fields.

    Examples
    --------
    >>> X = State(rr=[1.0, 0.5, -0.2], mu=8)
    >>> X.rr.shape
    (3,)
    """

    __slots__ = ()

    def replace(self, **fields: Any) -> State:
        """Return a copy with some fields replaced or added."""
        merged = dict(self._fields)
        merged.update({k: jnp.asarray(v) for k, v in fields.items()})
        return State._from_raw(merged)

    def perturb(self, direction: DState, eps: float = 1.0) -> State:
        """
        Return ``self + eps * direction`` on the fields carried by ``direction``.

        Raises
        ------
        ValueError
            If ``direction`` carries a field this state does not have.
        """
        merged = dict(self._fields)
        for name, value in direction.items():
            if name not in merged:
                raise ValueError(f"Cannot perturb missing state field '{name}'")
            merged[name] = merged[name] + eps * value
        return State._from_raw(merged)


@register_pytree_node_class
class DState(_FieldRecord):
    """
    Gradient (or cotangent) with respect to a :class:`State`.

    Missing fields are zeros, so ``DState()`` is the additive identity and
    binary operations take the union of the operands' fields.
    """

    __slots__ = ()

    @classmethod
    def zero(cls) -> DState:
        return cls._from_raw({})

    def _combine(self, other: DState, op) -> DState:
        out = dict(self._fields)
        for name, value in other.items():
            out[name] = op(out[name], value) if name in out else op(jnp.zeros_like(value), value)
        return DState._from_raw(out)

    def __add__(self, other: Any) -> DState:
        # allows sum() over DStates, which starts from the integer 0
        if isinstance(other, int) and other == 0:
            return self
        if not isinstance(other, DState):
            return NotImplemented
        return self._combine(other, jnp.add)

    __radd__ = __add__

    def __sub__(self, other: DState) -> DState:
        if not isinstance(other, DState):
            return NotImplemented
        return self._combine(other, jnp.subtract)

    def __neg__(self) -> DState:
        return DState._from_raw({k: -v for k, v in self._fields.items()})

    def __mul__(self, c: Any) -> DState:
        return DState._from_raw({k: c * v for k, v in self._fields.items()})

    __rmul__ = __mul__

    def __truediv__(self, c: Any) -> DState:
        return DState._from_raw({k: v / c for k, v in self._fields.items()})

    def conj(self) -> DState:
        return DState._from_raw({k: jnp.conj(v) for k, v in self._fields.items()})

    # ------------------------------------------------------------------
    # Batched (leading-axis) operations
    # ------------------------------------------------------------------

    def scale(self, coeffs: jnp.ndarray) -> DState:
        """Multiply row ``k`` of every field by ``coeffs[k]``."""
        return DState._from_raw({k: v * _expand(coeffs, v) for k, v in self._fields.items()})

    def take(self, indices: Any) -> DState:
        """Gather rows (or a single row) along the leading axis."""
        return DState._from_raw({k: v[indices] for k, v in self._fields.items()})

    def row(self, k: int) -> DState:
        """Gradient of the ``k``-th basis function."""
        return self.take(k)

    def scatter_add(self, indices: jnp.ndarray, length: int) -> DState:
        """
        Sum rows into ``length`` buckets; row ``j`` lands in ``indices[j]``.

        Repeated indices accumulate.
        """
        out = {}
        for k, v in self._fields.items():
            buf = jnp.zeros((length,) + v.shape[1:], dtype=v.dtype)
            out[k] = buf.at[indices].add(v)
        return DState._from_raw(out)

    def sum(self) -> DState:
        """Collapse the leading axis."""
        return DState._from_raw({k: jnp.sum(v, axis=0) for k, v in self._fields.items()})

    def inner(self, other: DState, batched: bool = False) -> jnp.ndarray:
        """
        Bilinear pairing ``sum_fields sum_components self * other``.

        With ``batched=True`` the leading axis is kept and one value per row
        is returned. Fields present in only one operand contribute zero.
        """
        total = 0.0
        for name, value in self._fields.items():
            if name not in other:
                continue
            prod = value * other[name]
            if batched:
                total = total + jnp.sum(prod, axis=tuple(range(1, prod.ndim)))
            else:
                total = total + jnp.sum(prod)
        return jnp.asarray(total)


class Configuration:
    """
    Ordered, immutable collection of particle states.

    Parameters
    ----------
    states : iterable of State
        The states, in order.
    """

    def __init__(self, states: Iterable[State]):
        self.states: tuple[State, ...] = tuple(states)
        for X in self.states:
            if not isinstance(X, State):
                raise ValueError(f"Configuration entries must be State, got {type(X).__name__}")

    def representative(self) -> State:
        """A state used to infer value and gradient types for the whole configuration."""
        if not self.states:
            raise ValueError("Empty configuration has no representative state")
        return self.states[0]

    def __len__(self) -> int:
        return len(self.states)

    def __iter__(self) -> Iterator[State]:
        return iter(self.states)

    def __getitem__(self, i: int) -> State:
        return self.states[i]

    def __repr__(self) -> str:
        return f"Configuration(n_states={len(self)})"
