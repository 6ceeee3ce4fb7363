"""Tests for the tensor-product basis."""

from collections.abc import Mapping
from typing import Any

import jax.numpy as jnp
import numpy as np
import pytest

from jaxace import (
    BasisIndexError,
    ChebyshevRadialBasis,
    Configuration,
    DState,
    ProductBasis,
    RadialBasis1p,
    SpeciesBasis1p,
    StaleSpecificationError,
    State,
    evaluate,
    evaluate_d,
    rrule,
)
from jaxace.basis import SingleIndexBasis1p


class IndexOnlyBasis(SingleIndexBasis1p):
    """Constant basis used to exercise index bookkeeping."""

    def __init__(self, length, idxsym):
        self.length = length
        self.idxsym = idxsym

    def __len__(self):
        return self.length

    def evaluate(self, X):
        return jnp.ones(self.length)

    def evaluate_d(self, X):
        return DState.zero()

    def pullback(self, X, w):
        return DState.zero()

    def pullback_d(self, X, w):
        return DState.zero()

    def to_dict(self) -> dict[str, Any]:
        return {"length": self.length, "idxsym": self.idxsym}

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]):
        return cls(config["length"], config["idxsym"])

    def __eq__(self, other):
        return isinstance(other, IndexOnlyBasis) and self.to_dict() == other.to_dict()


class PhaseBasis(SingleIndexBasis1p):
    """Complex basis ``exp(i j x)`` over the scalar field ``x``."""

    def __init__(self, length, idxsym="j"):
        self.length = length
        self.idxsym = idxsym

    def __len__(self):
        return self.length

    def _phases(self, X):
        j = jnp.arange(self.length)
        return j, jnp.exp(1j * j * X.x)

    def evaluate(self, X):
        return self._phases(X)[1]

    def evaluate_d(self, X):
        j, e = self._phases(X)
        return DState(x=1j * j * e)

    def pullback(self, X, w):
        return DState(x=jnp.real(jnp.vdot(w, self.evaluate_d(X).x)))

    def pullback_d(self, X, w):
        if "x" not in w:
            return DState.zero()
        j, e = self._phases(X)
        return DState(x=jnp.real(jnp.vdot(w.x, -(j**2) * e)))

    def to_dict(self) -> dict[str, Any]:
        return {"length": self.length, "idxsym": self.idxsym}

    
    def from_dict(cls, config: Mapping[str, Any]):
        return cls(config["length"], config["idxsym"])

    def __eq__(self, other):
        return isinstance(other, PhaseBasis) and self.to_dict() == other.to_dict()


def _full_spec(Rn, Pk, Zk):
    return [
        {"n": n, "k": k, "mu": z}
        for n in range(len(Rn))
        for k in range(len(Pk))
        for z in Zk.species
    ]


@pytest.fixture
def B(Rn, Pk, Zk):
    """Product of radial, scalar and species factors over the full cross spec."""
    return (Rn * Pk * Zk).set_spec(_full_spec(Rn, Pk, Zk))


def _directional_fd(f, X, d, eps=1e-6):
    return (f(X.perturb(d, eps)) - f(X.perturb(d, -eps))) / (2 * eps)


def _random_direction(rng):
    return DState(rr=rng.randn(3), x=rng.randn())


class TestProductConstruction:
    """Construction, flattening and spec handling."""

    def test_length_of_full_cross(self, Rn, Pk):
        B = (Rn * Pk).set_spec([{"n": n, "k": k} for n in range(5) for k in range(3)])
        assert len(B) == 15
        assert B.indices.shape == (15, 2)

    def test_flattening(self, Rn, Pk, Zk):
        left = (Rn * Pk) * Zk
        right = Rn * (Pk * Zk)
        assert left.nbases == right.nbases == 3
        for a, b, c in zip(left.bases, right.bases, (Rn, Pk, Zk)):
            assert a is c
            assert b is c

    def test_flattening_gives_identical_outputs(self, Rn, Pk, Zk, random_state, rng):
        spec = _full_spec(Rn, Pk, Zk)
        left = ((Rn * Pk) * Zk).set_spec(spec)
        right = (Rn * (Pk * Zk)).set_spec(spec)
        X = random_state()
        K = len(spec)
        w = jnp.asarray(rng.randn(K))
        wd = DState(rr=rng.randn(K, 3), x=rng.randn(K))

        np.testing.assert_allclose(left.evaluate(X), right.evaluate(X))
        dl, dr = left.evaluate_d(X), right.evaluate_d(X)
        np.testing.assert_allclose(dl.rr, dr.rr)
        np.testing.assert_allclose(dl.x, dr.x)
        gl, gr = left.pullback(X, w), right.pullback(X, w)
        np.testing.assert_allclose(gl.rr, gr.rr)
        np.testing.assert_allclose(gl.x, gr.x)
        gl, gr = left.pullback_d(X, wd), right.pullback_d(X, wd)
        np.testing.assert_allclose(gl.rr, gr.rr)
        np.testing.assert_allclose(gl.x, gr.x)
        assert left == right

    def test_rejects_bad_arguments(self, Rn):
        with pytest.raises(ValueError, match="at least one"):
            ProductBasis([])
        with pytest.raises(ValueError, match="OneParticleBasis"):
            ProductBasis([Rn, "not a basis"])
        with pytest.raises(ValueError, match="without spec"):
            ProductBasis([Rn], indices=[[0]])

    def test_spec_in_constructor(self, Rn, Zk):
        B = ProductBasis([Rn, Zk], spec=[{"n": 2, "mu": 8}, {"n": 0, "mu": 1}])
        np.testing.assert_array_equal(np.asarray(B.indices), [[2, 1], [0, 0]])
        assert B.get_spec(1) == {"n": 0, "mu": 1}

    def test_spec_entries_are_read_only(self, B):
        with pytest.raises(TypeError):
            B.spec[0]["n"] = 3

    def test_failed_set_spec_keeps_old_table(self, B):
        old_spec = B.get_spec()
        old_indices = np.asarray(B.indices)
        with pytest.raises(BasisIndexError):
            B.set_spec([{"n": 0, "k": 0, "mu": 1}, {"n": 99, "k": 0, "mu": 1}])
        assert B.get_spec() == old_spec
        np.testing.assert_array_equal(np.asarray(B.indices), old_indices)

    def test_duplicate_entries_warn(self, Rn, random_state):
        B = ProductBasis([Rn])
        with pytest.warns(UserWarning, match="repeated"):
            B.set_spec([{"n": 1}, {"n": 1}])
        X = random_state()
        A = B.evaluate(X)
        np.testing.assert_allclose(A[0], A[1])
        g = B.pullback(X, jnp.array([1.0, 1.0]))
        expected = Rn.pullback(X, jnp.array([0.0, 2.0, 0.0, 0.0, 0.0]))
        np.testing.assert_allclose(g.rr, expected.rr)

    def test_validate_detects_stale_table(self, Rn):
        B = ProductBasis([Rn], spec=[{"n": 4}])
        B.validate()
        Rn.R = ChebyshevRadialBasis(maxn=3, rin=0.0, rcut=4.0)
        with pytest.raises(StaleSpecificationError):
            B.validate()

    def test_empty_spec(self, Rn, Zk, random_state):
        B = Rn * Zk
        X = random_state()
        assert len(B) == 0
        assert B.evaluate(X).shape == (0,)
        assert B.evaluate_d(X).rr.shape == (0, 3)


class TestProductIndexing:
    """Symbols, ranges, admissibility and degrees."""

    def test_symbols_in_order(self, Rn, Pk, Zk):
        assert (Rn * Pk * Zk).symbols() == ["n", "k", "mu"]

    def test_indexrange_union(self):
        R3 = RadialBasis1p(ChebyshevRadialBasis(maxn=3))
        R5 = RadialBasis1p(ChebyshevRadialBasis(maxn=5))
        B = R3 * R5 * SpeciesBasis1p([1, 8]) * SpeciesBasis1p([8, 6])
        rg = B.indexrange()
        assert rg["n"] == [0, 1, 2, 3, 4]
        assert rg["mu"] == [1, 8, 6]

    def test_m_range_follows_max_l(self):
        B = IndexOnlyBasis(3, "l") * IndexOnlyBasis(2, "m")
        rg = B.indexrange()
        assert rg["l"] == [0, 1, 2]
        assert rg["m"] == [-2, -1, 0, 1, 2]

    def test_m_without_l_fails(self, Rn):
        B = Rn * IndexOnlyBasis(2, "m")
        with pytest.raises(ValueError, match="'l'"):
            B.indexrange()

    def test_isadmissible(self, B):
        assert B.isadmissible({"n": 1, "k": 0, "mu": 8})
        assert not B.isadmissible({"n": 1, "k": 0, "mu": 6})
        assert not B.isadmissible({"n": 1, "mu": 8})

    def test_index_of(self, B):
        entry = B.get_spec(7)
        assert B.index_of(entry) == 7
        assert B.index_of(dict(entry)) == 7
        with pytest.raises(BasisIndexError):
            B.index_of({"n": 9, "k": 0, "mu": 1})

    def test_index_of_follows_set_spec(self, Rn):
        B = ProductBasis([Rn], spec=[{"n": 3}, {"n": 1}])
        assert B.index_of({"n": 1}) == 1
        with pytest.warns(UserWarning):
            B.set_spec([{"n": 1}, {"n": 0}, {"n": 1}])
        assert B.index_of({"n": 1}) == 0
        assert B.index_of({"n": 0}) == 1
        with pytest.raises(BasisIndexError):
            B.index_of({"n": 3})

    def test_degree(self, B):
        assert B.degree({"n": 2, "k": 1, "mu": 8}) == 3
        assert B.degree({"n": 2, "k": 1, "mu": 8}, weight={"n": 1.0, "k": 2.0}) == 4.0

    def test_degree_needs_every_index(self, B):
        with pytest.raises(BasisIndexError):
            B.degree({"n": 2, "mu": 8})

    def test_summary_lists_sub_bases(self, B):
        text = B.summary()
        assert "ProductBasis with 30 basis functions" in text
        assert "[2] SpeciesBasis1p" in text


class TestProductEvaluation:
    """Values and gradients."""

    def test_values_are_products(self, Rn, Pk, Zk, B, random_state):
        X = random_state(mu=1)
        R, P, Z = Rn.evaluate(X), Pk.evaluate(X), Zk.evaluate(X)
        expected = [R[e["n"]] * P[e["k"]] * Z[Zk.species.index(e["mu"])] for e in B.spec]
        np.testing.assert_allclose(B.evaluate(X), expected)

    def test_gradient_finite_difference(self, B, random_state, rng):
        X = random_state()
        d = _random_direction(rng)
        dA = B.evaluate_d(X)
        assert set(dA.fields) == {"rr", "x"}
        directional = dA.rr @ d.rr + dA.x * d.x
        fd = _directional_fd(B.evaluate, X, d)
        np.testing.assert_allclose(directional, fd, rtol=1e-6, atol=1e-8)

    def test_evaluate_ed_matches(self, B, random_state):
        X = random_state()
        A, dA = B.evaluate_ed(X)
        np.testing.assert_allclose(A, B.evaluate(X))
        np.testing.assert_allclose(dA.rr, B.evaluate_d(X).rr)
        np.testing.assert_allclose(dA.x, B.evaluate_d(X).x)

    def test_species_selects_half(self, B, random_state):
        X = random_state(mu=8)
        A = B.evaluate(X)
        for k, e in enumerate(B.spec):
            if e["mu"] != 8:
                assert A[k] == 0.0

    def test_single_factor_degenerates(self, Rn, random_state, rng):
        B = ProductBasis([Rn], spec=Rn.get_spec())
        X = random_state()
        w = jnp.asarray(rng.randn(5))
        wd = DState(rr=rng.randn(5, 3))
        np.testing.assert_allclose(B.evaluate(X), Rn.evaluate(X))
        np.testing.assert_allclose(B.evaluate_d(X).rr, Rn.evaluate_d(X).rr)
        np.testing.assert_allclose(B.pullback(X, w).rr, Rn.pullback(X, w).rr)
        np.testing.assert_allclose(B.pullback_d(X, wd).rr, Rn.pullback_d(X, wd).rr)

    def test_discrete_only_product(self, Zk):
        B = ProductBasis([Zk, SpeciesBasis1p([1, 8], varsym="nu", idxsym="nu")])
        B.set_spec([{"mu": 1, "nu": 8}, {"mu": 8, "nu": 8}])
        X = State(mu=8, nu=8)
        assert not B.differentiable
        np.testing.assert_array_equal(B.evaluate(X), [0.0, 1.0])
        assert B.evaluate_d(X).fields == ()
        assert B.pullback(X, jnp.ones(2)).fields == ()
        assert B.pullback_d(X, DState()).fields == ()

    def test_valtype(self, B, random_state):
        X = random_state()
        assert B.valtype(X) == jnp.float64
        assert B.valtype(Configuration([X])) == jnp.float64

    def test_evaluate_config(self, B, random_state):
        cfg = Configuration([random_state(), random_state(mu=1)])
        out = B.evaluate_config(cfg)
        assert out.shape == (2, 30)
        np.testing.assert_allclose(out[1], B.evaluate(cfg[1]))
        assert B.evaluate_config(Configuration([])).shape == (0, 30)
        assert len(B.evaluate_d_config(cfg)) == 2


class TestProductAdjoints:
    """Pullbacks of values and gradients."""

    def test_pullback_finite_difference(self, B, random_state, rng):
        X = random_state()
        w = jnp.asarray(rng.randn(len(B)))
        d = _random_direction(rng)
        g = B.pullback(X, w)
        fd = _directional_fd(lambda Y: jnp.dot(w, B.evaluate(Y)), X, d)
        np.testing.assert_allclose(g.inner(d), fd, rtol=1e-6, atol=1e-8)

    def test_pullback_d_finite_difference(self, B, random_state, rng):
        X = random_state()
        w = DState(rr=rng.randn(len(B), 3), x=rng.randn(len(B)))
        d = _random_direction(rng)
        g = B.pullback_d(X, w)
        fd = _directional_fd(lambda Y: w.inner(B.evaluate_d(Y)), X, d)
        np.testing.assert_allclose(g.inner(d), fd, rtol=1e-6, atol=1e-8)

    def test_pullback_d_with_partial_cotangent(self, B, random_state, rng):
        X = random_state()
        w = DState(x=rng.randn(len(B)))
        d = _random_direction(rng)
        g = B.pullback_d(X, w)
        fd = _directional_fd(lambda Y: w.inner(B.evaluate_d(Y)), X, d)
        np.testing.assert_allclose(g.inner(d), fd, rtol=1e-6, atol=1e-8)

    def test_rrules_match_pullbacks(self, B, random_state, rng):
        X = random_state()
        w = jnp.asarray(rng.randn(len(B)))
        wd = DState(rr=rng.randn(len(B), 3), x=rng.randn(len(B)))

        A, back = rrule(evaluate, B, X)
        np.testing.assert_allclose(A, B.evaluate(X))
        np.testing.assert_allclose(back(w).rr, B.pullback(X, w).rr)
        np.testing.assert_allclose(back(w).x, B.pullback(X, w).x)

        dA, back_d = rrule(evaluate_d, B, X)
        np.testing.assert_allclose(dA.rr, B.evaluate_d(X).rr)
        np.testing.assert_allclose(back_d(wd).rr, B.pullback_d(X, wd).rr)
        np.testing.assert_allclose(back_d(wd).x, B.pullback_d(X, wd).x)

    def test_rrule_closure_keeps_its_table(self, B, random_state, rng):
        X = random_state()
        w = jnp.asarray(rng.randn(len(B)))
        _, back = B.rrule_evaluate(X)
        expected = B.pullback(X, w).rr
        B.set_spec(B.get_spec()[:3])
        np.testing.assert_allclose(back(w).rr, expected)


class TestComplexAdjoints:
    """Complex cotangents pair as Re(sum conj(w) . out)."""

    @pytest.fixture
    def C(self, Pk):
        return (PhaseBasis(4) * Pk).set_spec([{"j": j, "k": k} for j in range(4) for k in range(3)])

    def test_pullback(self, C, rng):
        X = State(x=0.9)
        w = jnp.asarray(rng.randn(len(C)) + 1j * rng.randn(len(C)))
        g = C.pullback(X, w)
        fd = _directional_fd(lambda Y: jnp.real(jnp.vdot(w, C.evaluate(Y))), X, DState(x=1.0))
        np.testing.assert_allclose(g.x, fd, rtol=1e-6, atol=1e-8)

    def test_pullback_d(self, C, rng):
        X = State(x=0.9)
        wd = DState(x=rng.randn(len(C)) + 1j * rng.randn(len(C)))
        g = C.pullback_d(X, wd)
        fd = _directional_fd(
            lambda Y: jnp.real(jnp.vdot(wd.x, C.evaluate_d(Y).x)), X, DState(x=1.0)
        )
        np.testing.assert_allclose(g.x, fd, rtol=1e-6, atol=1e-8)
