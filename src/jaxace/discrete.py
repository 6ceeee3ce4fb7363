"""
Categorical one-particle bases.

These bases depend only on discrete state fields, so they have values but
no gradient. Products use their values in every term and drop their
derivative terms.
"""

from __future__ import annotations

import numbers
from collections.abc import Mapping, Sequence
from typing import Any

import jax.numpy as jnp

from .basis import OneParticleBasis, register_basis
from .exceptions import BasisIndexError
from .states import DState, State

DEFAULT_VARSYM = "mu"
DEFAULT_IDXSYM = "mu"


@register_basis("jaxace.SpeciesBasis1p")
class SpeciesBasis1p(OneParticleBasis):
    """
    Indicator basis over particle species: ``phi_z(X) = [X.mu == z]``.

    Parameters
    ----------
    species : sequence of int
        Admissible species (e.g. atomic numbers), in output order.
    varsym : str
        Integer state field holding the species (default ``"mu"``).
    idxsym : str
        Index symbol; spec entries carry the species value itself
        (default ``"mu"``).

    Examples
    --------
    >>> B = SpeciesBasis1p([1, 8])
    >>> B.evaluate(State(mu=8))
    Array([0., 1.], dtype=float32)
    """

    differentiable = False

    def __init__(
        self,
        species: Sequence[int],
        varsym: str = DEFAULT_VARSYM,
        idxsym: str = DEFAULT_IDXSYM,
    ):
        species = [int(z) for z in species]
        if not species:
            raise ValueError("species must not be empty")
        if len(set(species)) != len(species):
            raise ValueError(f"species must be unique, got {species}")
        self.species = species
        self.varsym = varsym
        self.idxsym = idxsym

    def __len__(self) -> int:
        return len(self.species)

    def evaluate(self, X: State) -> jnp.ndarray:
        return (jnp.asarray(self.species) == X[self.varsym]).astype(jnp.result_type(float))

    def evaluate_d(self, X: State) -> DState:
        return DState.zero()

    def pullback(self, X: State, w: jnp.ndarray) -> DState:
        return DState.zero()

    def pullback_d(self, X: State, w: DState) -> DState:
        return DState.zero()

    def symbols(self) -> list[str]:
        return [self.idxsym]

    def indexrange(self) -> dict[str, list[int]]:
        return {self.idxsym: list(self.species)}

    def isadmissible(self, entry: Mapping[str, int]) -> bool:
        z = entry.get(self.idxsym)
        return (
            isinstance(z, numbers.Integral) and not isinstance(z, bool) and int(z) in self.species
        )

    def index_of(self, entry: Mapping[str, int]) -> int:
        if not self.isadmissible(entry):
            raise BasisIndexError(
                f"Entry {dict(entry)} is not admissible for SpeciesBasis1p "
                f"('{self.idxsym}' must be one of {self.species})"
            )
        return self.species.index(int(entry[self.idxsym]))

    def degree(self, entry: Mapping[str, int], weight: Mapping[str, float] | None = None) -> int:
        return 0

    def get_spec(self) -> list[Mapping[str, int]]:
        return [{self.idxsym: z} for z in self.species]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SpeciesBasis1p):
            return NotImplemented
        return (
            self.species == other.species
            and self.varsym == other.varsym
            and self.idxsym == other.idxsym
        )

    def __repr__(self) -> str:
        return f"SpeciesBasis1p(species={self.species}, varsym={self.varsym!r})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "__id__": self._serial_id,
            "species": list(self.species),
            "varsym": self.varsym,
            "idxsym": self.idxsym,
        }

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> SpeciesBasis1p:
        return cls(
            config["species"],
            varsym=config.get("varsym", DEFAULT_VARSYM),
            idxsym=config.get("idxsym", DEFAULT_IDXSYM),
        )
