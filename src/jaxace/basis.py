"""
One-particle basis contract for JAXACE.

Every basis that can take part in a product (radial adapters, scalar
adapters, categorical bases and products themselves) derives from
:class:`OneParticleBasis` and implements the same small set of operations:
values, gradients, the two adjoints, and the index bookkeeping needed to
resolve named multi-indices into positions.

Bases are serialized as tagged dictionaries. Each concrete class registers
its tag with :func:`register_basis`; :func:`read_dict` dispatches on it.
"""

from __future__ import annotations

import abc
import json
import numbers
from collections.abc import Callable, Mapping
from typing import Any

import jax.numpy as jnp

from .exceptions import BasisIndexError
from .states import Configuration, DState, State

# Schema version for forward/backward compatibility of saved files
_SCHEMA_VERSION = "1.0.0"

_BASIS_REGISTRY: dict[str, type] = {}


def register_basis(tag: str) -> Callable[[type], type]:
    """
    Class decorator registering a serializable basis under ``tag``.

    The tag is stored as ``cls._serial_id`` and written to the ``"__id__"``
    key by ``to_dict``.
    """

    def decorator(cls: type) -> type:
        if tag in _BASIS_REGISTRY and _BASIS_REGISTRY[tag] is not cls:
            raise ValueError(f"Basis tag '{tag}' is already registered")
        _BASIS_REGISTRY[tag] = cls
        cls._serial_id = tag
        return cls

    return decorator


def read_dict(config: Mapping[str, Any]) -> Any:
    """
    Reconstruct a basis (or radial collaborator) from its tagged dictionary.

    Raises
    ------
    ValueError
        If the record has no tag or the tag is unknown.
    """
    tag = config.get("__id__")
    if tag is None:
        raise ValueError("Basis record has no '__id__' tag")
    if tag not in _BASIS_REGISTRY:
        raise ValueError(f"Unknown basis type: {tag}. Available: {sorted(_BASIS_REGISTRY)}")
    return _BASIS_REGISTRY[tag].from_dict(config)


class OneParticleBasis(abc.ABC):
    """
    A family of functions of a single particle's state.

    Subclasses must implement the abstract methods below. The base class
    provides fused evaluation, reverse-mode rules, evaluation over
    configurations, composition with ``*`` and JSON persistence.

    Attributes
    ----------
    differentiable : bool
        False for categorical bases whose values do not depend on any
        continuous state field. The product basis skips gradient work for
        such factors but still uses their values.
    """

    differentiable: bool = True

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def __len__(self) -> int:
        """Number of basis functions."""

    @abc.abstractmethod
    def evaluate(self, X: State) -> jnp.ndarray:
        """Values of all basis functions at ``X``, shape ``(len(self),)``."""

    @abc.abstractmethod
    def evaluate_d(self, X: State) -> DState:
        """Gradients of all basis functions at ``X`` as a batched DState."""

    @abc.abstractmethod
    def pullback(self, X: State, w: jnp.ndarray) -> DState:
        """Adjoint of :meth:`evaluate`: the cotangent of ``X`` for output cotangent ``w``."""

    @abc.abstractmethod
    def pullback_d(self, X: State, w: DState) -> DState:
        """Adjoint of :meth:`evaluate_d` for a gradient-shaped cotangent ``w``."""

    @abc.abstractmethod
    def symbols(self) -> list[str]:
        """Index symbols appearing in this basis' spec entries."""

    @abc.abstractmethod
    def indexrange(self) -> dict[str, list[int]]:
        """Admissible values of each index symbol."""

    @abc.abstractmethod
    def isadmissible(self, entry: Mapping[str, int]) -> bool:
        """Whether ``entry`` selects a function of this basis."""

    @abc.abstractmethod
    def index_of(self, entry: Mapping[str, int]) -> int:
        """Position of ``entry`` in this basis; raises :class:`BasisIndexError`."""

    @abc.abstractmethod
    def degree(self, entry: Mapping[str, int], weight: Mapping[str, float] | None = None) -> Any:
        """Degree of ``entry``, used to truncate spec enumerations."""

    @abc.abstractmethod
    def get_spec(self) -> list[Mapping[str, int]]:
        """Spec entries of all basis functions, in output order."""

    @abc.abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Serialize to a tagged dictionary."""

    @classmethod
    @abc.abstractmethod
    def from_dict(cls, config: Mapping[str, Any]) -> OneParticleBasis:
        """Reconstruct from :meth:`to_dict` output."""

    @abc.abstractmethod
    def __eq__(self, other: object) -> bool:
        pass

    __hash__ = None

    # ------------------------------------------------------------------
    # Provided
    # ------------------------------------------------------------------

    def evaluate_ed(self, X: State) -> tuple[jnp.ndarray, DState]:
        """Values and gradients together."""
        return self.evaluate(X), self.evaluate_d(X)

    def rrule_evaluate(self, X: State) -> tuple[jnp.ndarray, Callable[[jnp.ndarray], DState]]:
        """Values at ``X`` together with the pullback closure."""
        return self.evaluate(X), lambda w: self.pullback(X, w)

    def rrule_evaluate_d(self, X: State) -> tuple[DState, Callable[[DState], DState]]:
        """Gradients at ``X`` together with the pullback closure."""
        return self.evaluate_d(X), lambda w: self.pullback_d(X, w)

    def valtype(self, X: State | Configuration) -> jnp.dtype:
        """
        Value dtype of this basis at a state or configuration.

        For a configuration the representative state is used.
        """
        if isinstance(X, Configuration):
            X = X.representative()
        return jnp.asarray(self.evaluate(X)).dtype

    def evaluate_config(self, cfg: Configuration) -> jnp.ndarray:
        """
        Evaluate on every state of a configuration.

        Returns
        -------
        B : jnp.ndarray
            Array of shape ``(len(cfg), len(self))``.
        """
        if len(cfg) == 0:
            return jnp.zeros((0, len(self)))
        return jnp.stack([self.evaluate(X) for X in cfg])

    def evaluate_d_config(self, cfg: Configuration) -> list[DState]:
        """Gradients on every state of a configuration, one batched DState per state."""
        return [self.evaluate_d(X) for X in cfg]

    def __mul__(self, other: Any) -> OneParticleBasis:
        """Tensor-product composition; nested products are flattened."""
        from .product import ProductBasis

        if not isinstance(other, OneParticleBasis):
            return NotImplemented
        return ProductBasis((self, other))

    def summary(self) -> str:
        """Return a summary of the basis."""
        lines = [
            f"{type(self).__name__} with {len(self)} basis functions:",
            f"  Symbols: {self.symbols()}",
            "  Index ranges:",
        ]
        for sym, rg in self.indexrange().items():
            lines.append(f"    {sym}: {list(rg)}")
        return "\n".join(lines)

    def save(self, filepath: str) -> None:
        """
        Save the basis to a JSON file.

        Parameters
        ----------
        filepath : str
            Path to save the basis.
        """
        with open(filepath, "w") as f:
            json.dump({"schema_version": _SCHEMA_VERSION, "basis": self.to_dict()}, f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> OneParticleBasis:
        """
        Load a basis from a JSON file written by :meth:`save`.

        Raises
        ------
        ValueError
            If the file has an incompatible schema version or holds a basis
            of a different type than ``cls``.
        """
        with open(filepath) as f:
            data = json.load(f)

        schema_ver = data.get("schema_version", "0.0.0")
        major = int(schema_ver.split(".")[0])
        if major > int(_SCHEMA_VERSION.split(".")[0]):
            raise ValueError(
                f"File schema version {schema_ver} is newer than supported "
                f"version {_SCHEMA_VERSION}. Please upgrade jaxace."
            )

        basis = read_dict(data["basis"])
        if not isinstance(basis, cls):
            raise ValueError(f"Expected {cls.__name__}, file contains {type(basis).__name__}")
        return basis


class SingleIndexBasis1p(OneParticleBasis):
    """
    Base for bases indexed by a single integer symbol ``0 <= idx < len``.

    Subclasses set ``self.idxsym`` and implement ``__len__``.
    """

    idxsym: str

    def _idx(self, entry: Mapping[str, int]) -> Any:
        return entry.get(self.idxsym)

    def symbols(self) -> list[str]:
        return [self.idxsym]

    def indexrange(self) -> dict[str, list[int]]:
        return {self.idxsym: list(range(len(self)))}

    def isadmissible(self, entry: Mapping[str, int]) -> bool:
        n = self._idx(entry)
        return isinstance(n, numbers.Integral) and not isinstance(n, bool) and 0 <= n < len(self)

    def index_of(self, entry: Mapping[str, int]) -> int:
        if not self.isadmissible(entry):
            raise BasisIndexError(
                f"Entry {dict(entry)} is not admissible for {type(self).__name__} "
                f"('{self.idxsym}' must be in 0..{len(self) - 1})"
            )
        return int(self._idx(entry))

    def degree(self, entry: Mapping[str, int], weight: Mapping[str, float] | None = None) -> Any:
        n = self._idx(entry)
        if n is None:
            raise BasisIndexError(f"Entry {dict(entry)} has no '{self.idxsym}' index")
        if weight is None:
            return n
        return weight[self.idxsym] * n

    def get_spec(self) -> list[Mapping[str, int]]:
        return [{self.idxsym: n} for n in range(len(self))]
