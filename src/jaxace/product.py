"""
Tensor-product one-particle basis.

A :class:`ProductBasis` combines ``N`` sub-bases ``B_1, ..., B_N`` into
functions

    A_k(X) = prod_t B_t[i_t(k)](X)

where the multi-index ``(i_1(k), ..., i_N(k))`` is resolved once from the
named spec entry ``k`` by asking every sub-basis for its ``index_of``. The
spec and the resolved indices live together in one frozen
:class:`SpecTable`; replacing the spec swaps the whole table at once.

Gradients follow the N-factor product rule and both adjoints distribute
an output cotangent over the sub-bases before handing each piece to the
sub-basis' own adjoint.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import jax.numpy as jnp
import numpy as np

from .basis import OneParticleBasis, read_dict, register_basis
from .exceptions import BasisIndexError, StaleSpecificationError
from .states import Configuration, DState, State


def _entry_key(entry: Mapping[str, int]) -> tuple:
    return tuple(sorted(dict(entry).items()))


@dataclass(frozen=True, eq=False)
class SpecTable:
    """
    Spec entries and their resolved per-sub-basis positions.

    Parameters
    ----------
    spec : tuple of mapping
        Read-only spec entries ``{symbol: int}`` in output order.
    indices : jnp.ndarray
        Integer array of shape ``(len(spec), nbases)``;
        ``indices[k, t] == bases[t].index_of(spec[k])``.
    positions : mapping
        Entry key -> first position of that entry in ``spec``.
    """

    spec: tuple[Mapping[str, int], ...]
    indices: jnp.ndarray
    positions: Mapping[tuple, int]

    @classmethod
    def build(
        cls,
        spec: Iterable[Mapping[str, int]],
        indices: Sequence[Sequence[int]] | np.ndarray,
        nbases: int,
    ) -> SpecTable:
        entries = tuple(
            MappingProxyType({str(k): int(v) for k, v in dict(e).items()}) for e in spec
        )
        idx = np.asarray(indices, dtype=np.int32)
        if idx.size == 0:
            idx = idx.reshape(0, nbases)
        if idx.shape != (len(entries), nbases):
            raise StaleSpecificationError(
                f"Index table of shape {idx.shape} does not match "
                f"{len(entries)} spec entries over {nbases} sub-bases"
            )
        positions: dict[tuple, int] = {}
        for k, e in enumerate(entries):
            positions.setdefault(_entry_key(e), k)
        return cls(entries, jnp.asarray(idx), MappingProxyType(positions))

    @classmethod
    def empty(cls, nbases: int) -> SpecTable:
        return cls.build((), (), nbases)

    def __len__(self) -> int:
        return len(self.spec)


@dataclass
class FusedEvaluation:
    """
    Intermediate of one fused value+gradient pass.

    Owned by a single call; reused by the ``evaluate_d`` adjoint.

    Attributes
    ----------
    values : tuple of jnp.ndarray
        Value vector of every sub-basis.
    grads : tuple of DState or None
        Batched gradient of every sub-basis; None for non-differentiable ones.
    factors : jnp.ndarray
        ``factors[k, t] = values[t][indices[k, t]]``, shape ``(K, N)``.
    table : SpecTable
        The table generation the pass was computed with.
    """

    values: tuple[jnp.ndarray, ...]
    grads: tuple[DState | None, ...]
    factors: jnp.ndarray
    table: SpecTable


def _union(a: list[int], b: Iterable[int]) -> list[int]:
    return list(dict.fromkeys([*a, *b]))


def _symmetric_m_range(rg: dict[str, list[int]]) -> dict[str, list[int]]:
    """
    Fix the range of an angular ``m`` index to ``-maxl..maxl``.

    ``maxl`` is the largest admissible ``l`` over all sub-bases. Only a
    single ``(l, m)`` pair is handled; pairs such as ``(l1, m1), (l2, m2)``
    are not.
    """
    if "m" not in rg:
        return rg
    if not rg.get("l"):
        raise ValueError("An 'm' index requires an 'l' index range to fix its bounds")
    maxl = max(rg["l"])
    rg = dict(rg)
    rg["m"] = list(range(-maxl, maxl + 1))
    return rg


@register_basis("jaxace.ProductBasis")
class ProductBasis(OneParticleBasis):
    """
    Tensor product of one-particle bases, restricted to a spec table.

    Parameters
    ----------
    bases : sequence of OneParticleBasis
        Sub-bases. Product bases among them are flattened into their own
        sub-bases, so products never nest.
    spec : iterable of mapping, optional
        Spec entries. If given without ``indices`` they are resolved with
        :meth:`set_spec`.
    indices : array-like, optional
        Pre-resolved index table, restored verbatim and validated.

    Examples
    --------
    >>> Rn = RadialBasis1p(ChebyshevRadialBasis(maxn=4))
    >>> Zk = SpeciesBasis1p([1, 8])
    >>> B = Rn * Zk
    >>> B.set_spec([{"n": n, "mu": z} for n in range(4) for z in (1, 8)])
    >>> B.evaluate(State(rr=[1.0, 0.0, 0.0], mu=8)).shape
    (8,)
    """

    def __init__(
        self,
        bases: Iterable[OneParticleBasis],
        spec: Iterable[Mapping[str, int]] | None = None,
        indices: Sequence[Sequence[int]] | np.ndarray | None = None,
    ):
        flat: list[OneParticleBasis] = []
        for b in bases:
            if isinstance(b, ProductBasis):
                flat.extend(b.bases)
            elif isinstance(b, OneParticleBasis):
                flat.append(b)
            else:
                raise ValueError(f"Expected OneParticleBasis, got {type(b).__name__}")
        if not flat:
            raise ValueError("ProductBasis requires at least one sub-basis")
        self.bases: tuple[OneParticleBasis, ...] = tuple(flat)
        self._table = SpecTable.empty(len(flat))

        if spec is not None and indices is not None:
            self._table = self._checked(SpecTable.build(spec, indices, len(flat)))
        elif spec is not None:
            self.set_spec(spec)
        elif indices is not None:
            raise ValueError("indices given without spec")

    # ------------------------------------------------------------------
    # Spec table
    # ------------------------------------------------------------------

    @property
    def nbases(self) -> int:
        """Number of sub-bases."""
        return len(self.bases)

    @property
    def spec(self) -> tuple[Mapping[str, int], ...]:
        return self._table.spec

    @property
    def indices(self) -> jnp.ndarray:
        return self._table.indices

    @property
    def differentiable(self) -> bool:
        return any(b.differentiable for b in self.bases)

    def __len__(self) -> int:
        return len(self._table)

    def set_spec(self, spec: Iterable[Mapping[str, int]]) -> ProductBasis:
        """
        Replace the spec table.

        Every entry is resolved against every sub-basis before the new
        table is installed, so on error the previous table stays in place.

        Parameters
        ----------
        spec : iterable of mapping
            Spec entries ``{symbol: int}``, in output order.

        Returns
        -------
        self : ProductBasis
            For method chaining.

        Raises
        ------
        BasisIndexError
            If an entry is not admissible for some sub-basis.
        StaleSpecificationError
            If a sub-basis reports a position outside its own length.
        """
        entries = [dict(e) for e in spec]
        rows = [[b.index_of(e) for b in self.bases] for e in entries]
        table = self._checked(SpecTable.build(entries, rows, self.nbases))

        keys = [tuple(sorted(e.items())) for e in entries]
        if len(set(keys)) != len(keys):
            warnings.warn(
                "Spec contains repeated entries; they produce identical basis functions.",
                stacklevel=2,
            )

        self._table = table
        return self

    def _checked(self, table: SpecTable) -> SpecTable:
        idx = np.asarray(table.indices)
        for t, b in enumerate(self.bases):
            col = idx[:, t]
            if col.size and (col.min() < 0 or col.max() >= len(b)):
                raise StaleSpecificationError(
                    f"Index table refers to positions {int(col.min())}..{int(col.max())} "
                    f"of sub-basis {t} ({type(b).__name__}), which has length {len(b)}"
                )
        return table

    def validate(self) -> None:
        """
        Re-check the spec table against the current sub-basis lengths.

        Raises
        ------
        StaleSpecificationError
            If a sub-basis was reconfigured after the table was built.
        """
        self._checked(self._table)

    def get_spec(self, i: int | None = None) -> Any:
        if i is None:
            return list(self._table.spec)
        return self._table.spec[i]

    # ------------------------------------------------------------------
    # Index bookkeeping
    # ------------------------------------------------------------------

    def symbols(self) -> list[str]:
        syms: list[str] = []
        for b in self.bases:
            for s in b.symbols():
                if s not in syms:
                    syms.append(s)
        return syms

    def indexrange(self) -> dict[str, list[int]]:
        rg: dict[str, list[int]] = {sym: [] for sym in self.symbols()}
        for b in self.bases:
            for sym, values in b.indexrange().items():
                if sym in rg:
                    rg[sym] = _union(rg[sym], values)
        return _symmetric_m_range(rg)

    def isadmissible(self, entry: Mapping[str, int]) -> bool:
        return all(b.isadmissible(entry) for b in self.bases)

    def index_of(self, entry: Mapping[str, int]) -> int:
        k = self._table.positions.get(_entry_key(entry))
        if k is not None:
            return k
        raise BasisIndexError(f"Entry {dict(entry)} is not in the spec table of this ProductBasis")

    def degree(self, entry: Mapping[str, int], weight: Mapping[str, float] | None = None) -> Any:
        return sum(b.degree(entry, weight) for b in self.bases)

    def valtype(self, X: State | Configuration) -> jnp.dtype:
        if isinstance(X, Configuration):
            X = X.representative()
        return jnp.result_type(*[b.valtype(X) for b in self.bases])

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    @staticmethod
    def _gather(values: Sequence[jnp.ndarray], indices: jnp.ndarray) -> jnp.ndarray:
        return jnp.stack([B[indices[:, t]] for t, B in enumerate(values)], axis=1)

    @staticmethod
    def _prod_except(factors: jnp.ndarray, *skip: int) -> jnp.ndarray:
        """Row products of ``factors`` over all columns not in ``skip``."""
        keep = [s for s in range(factors.shape[1]) if s not in skip]
        if not keep:
            return jnp.ones(factors.shape[0], dtype=factors.dtype)
        return jnp.prod(factors[:, keep], axis=1)

    def _evaluate_bases(self, X: State) -> tuple[jnp.ndarray, ...]:
        return tuple(b.evaluate(X) for b in self.bases)

    def _fused(self, X: State) -> FusedEvaluation:
        table = self._table
        values = []
        grads = []
        for b in self.bases:
            if b.differentiable:
                B, dB = b.evaluate_ed(X)
            else:
                # categorical factors still contribute their values
                B, dB = b.evaluate(X), None
            values.append(B)
            grads.append(dB)
        factors = self._gather(values, table.indices)
        return FusedEvaluation(tuple(values), tuple(grads), factors, table)

    def _gradient(self, fused: FusedEvaluation) -> DState:
        idx = fused.table.indices
        dA = DState.zero()
        for a, dB in enumerate(fused.grads):
            if dB is None:
                continue
            dA = dA + dB.take(idx[:, a]).scale(self._prod_except(fused.factors, a))
        return dA

    def evaluate(self, X: State) -> jnp.ndarray:
        table = self._table
        factors = self._gather(self._evaluate_bases(X), table.indices)
        return jnp.prod(factors, axis=1)

    def evaluate_ed(self, X: State) -> tuple[jnp.ndarray, DState]:
        fused = self._fused(X)
        return jnp.prod(fused.factors, axis=1), self._gradient(fused)

    def evaluate_d(self, X: State) -> DState:
        return self._gradient(self._fused(X))

    # ------------------------------------------------------------------
    # Adjoints
    # ------------------------------------------------------------------

    def _pullback(self, X: State, factors: jnp.ndarray, table: SpecTable, w: Any) -> DState:
        w = jnp.asarray(w)
        idx = table.indices
        g = DState.zero()
        for t, b in enumerate(self.bases):
            if not b.differentiable:
                continue
            coeff = w * jnp.conj(self._prod_except(factors, t))
            Wt = jnp.zeros(len(b), dtype=coeff.dtype).at[idx[:, t]].add(coeff)
            g = g + b.pullback(X, Wt)
        return g

    def pullback(self, X: State, w: jnp.ndarray) -> DState:
        """
        Adjoint of :meth:`evaluate`.

        For each sub-basis ``t`` the cotangent over its own functions is

            W_t[i] = sum_{k : i_t(k) = i} w[k] * conj(prod_{s != t} B_s[i_s(k)])

        and the result is ``sum_t B_t.pullback(X, W_t)``. For complex values
        this is the gradient of ``Re(sum_k conj(w[k]) A[k])``.
        """
        table = self._table
        factors = self._gather(self._evaluate_bases(X), table.indices)
        return self._pullback(X, factors, table, w)

    def rrule_evaluate(self, X: State) -> tuple[jnp.ndarray, Callable[[jnp.ndarray], DState]]:
        table = self._table
        factors = self._gather(self._evaluate_bases(X), table.indices)
        A = jnp.prod(factors, axis=1)
        return A, lambda w: self._pullback(X, factors, table, w)

    def _pullback_d(self, X: State, fused: FusedEvaluation, w: DState) -> DState:
        idx = fused.table.indices
        factors = fused.factors
        g = DState.zero()

        # through the derivative factor dB_a of each product-rule term
        for a, (b, dB) in enumerate(zip(self.bases, fused.grads)):
            if dB is None:
                continue
            Wd = w.scale(jnp.conj(self._prod_except(factors, a))).scatter_add(idx[:, a], len(b))
            g = g + b.pullback_d(X, Wd)

        # through the value factors B_t multiplying some other dB_a
        for t, b in enumerate(self.bases):
            if not b.differentiable:
                continue
            coeff = None
            for a, dB in enumerate(fused.grads):
                if a == t or dB is None:
                    continue
                term = w.inner(dB.take(idx[:, a]).conj(), batched=True) * jnp.conj(
                    self._prod_except(factors, a, t)
                )
                coeff = term if coeff is None else coeff + term
            if coeff is None:
                continue
            Wv = jnp.zeros(len(b), dtype=coeff.dtype).at[idx[:, t]].add(coeff)
            g = g + b.pullback(X, Wv)
        return g

    def pullback_d(self, X: State, w: DState) -> DState:
        """
        Adjoint of :meth:`evaluate_d`.

        ``dA[k] = sum_a dB_a[i_a] P_a[k]`` with ``P_a`` the product of the
        other factors, so the cotangent reaches each differentiable sub-basis
        twice: through ``dB_a`` (its own ``pullback_d``) and through every
        ``P_a`` it appears in (its ``pullback``).
        As for :meth:`pullback`, complex cotangents pair as
        ``Re(sum_k conj(w[k]) . dA[k])``.
        """
        return self._pullback_d(X, self._fused(X), w)

    def rrule_evaluate_d(self, X: State) -> tuple[DState, Callable[[DState], DState]]:
        fused = self._fused(X)
        return self._gradient(fused), lambda w: self._pullback_d(X, fused, w)

    # ------------------------------------------------------------------
    # Equality, representation, serialization
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProductBasis):
            return NotImplemented
        return (
            len(self.bases) == len(other.bases)
            and all(a == b for a, b in zip(self.bases, other.bases))
            and [dict(e) for e in self.spec] == [dict(e) for e in other.spec]
            and np.array_equal(np.asarray(self.indices), np.asarray(other.indices))
        )

    def __repr__(self) -> str:
        names = ", ".join(type(b).__name__ for b in self.bases)
        return f"ProductBasis(bases=({names}), n_spec={len(self)})"

    def summary(self) -> str:
        lines = [super().summary(), "  Sub-bases:"]
        for t, b in enumerate(self.bases):
            lines.append(f"    [{t}] {b!r} (length={len(b)})")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "__id__": self._serial_id,
            "bases": [b.to_dict() for b in self.bases],
            "spec": [dict(e) for e in self.spec],
            "indices": np.asarray(self.indices).tolist(),
        }

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> ProductBasis:
        """
        Reconstruct from :meth:`to_dict` output.

        The spec and index tables are restored verbatim and checked against
        the sub-basis lengths.

        Raises
        ------
        StaleSpecificationError
            If the stored indices do not fit the stored sub-bases.
        """
        bases = [read_dict(d) for d in config["bases"]]
        return cls(bases, spec=config.get("spec", []), indices=config.get("indices", []))
