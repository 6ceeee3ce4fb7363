"""Shared fixtures for the jaxace test suite."""

import jax

# finite-difference checks need double precision
jax.config.update("jax_enable_x64", True)

import jax.numpy as jnp  # noqa: E402
import numpy as np  # noqa: E402
import pytest  # noqa: E402

from jaxace import (  # noqa: E402
    ChebyshevRadialBasis,
    RadialBasis1p,
    ScalarBasis1p,
    SpeciesBasis1p,
    State,
)


@pytest.fixture
def rng():
    return np.random.RandomState(42)


@pytest.fixture
def Rn():
    """Radial basis with 5 functions over the displacement ``rr``."""
    return RadialBasis1p(ChebyshevRadialBasis(maxn=5, rin=0.0, rcut=4.0))


@pytest.fixture
def Pk():
    """Scalar basis with 3 functions over the field ``x``."""
    return ScalarBasis1p(ChebyshevRadialBasis(maxn=3, rin=0.0, rcut=2.0, envelope=False))


@pytest.fixture
def Zk():
    """Species indicator basis over H and O."""
    return SpeciesBasis1p([1, 8])


@pytest.fixture
def random_state(rng):
    """Factory for random states with 1 < |rr| < 2.5."""

    def make(mu=8):
        u = rng.randn(3)
        u = u / np.linalg.norm(u)
        r = rng.uniform(1.0, 2.5)
        return State(rr=jnp.asarray(r * u), x=rng.uniform(0.2, 1.8), mu=mu)

    return make
