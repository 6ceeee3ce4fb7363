"""Tests for the jaxace Click CLI."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from jaxace.cli import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def basis_file(tmp_path, Rn, Zk):
    """A saved radial x species product basis."""
    B = (Rn * Zk).set_spec([{"n": n, "mu": z} for n in range(3) for z in (1, 8)])
    filepath = str(tmp_path / "basis.json")
    B.save(filepath)
    return filepath


@pytest.fixture
def radial_file(tmp_path, Rn):
    filepath = str(tmp_path / "radial.json")
    Rn.save(filepath)
    return filepath


class TestInfo:
    def test_info(self, runner, basis_file):
        result = runner.invoke(main, ["info", basis_file])
        assert result.exit_code == 0
        assert "ProductBasis with 6 basis functions" in result.output
        assert "Sub-bases" in result.output

    def test_info_radial(self, runner, radial_file):
        result = runner.invoke(main, ["info", radial_file])
        assert result.exit_code == 0
        assert "RadialBasis1p with 5 basis functions" in result.output

    def test_info_missing_file(self, runner, tmp_path):
        result = runner.invoke(main, ["info", str(tmp_path / "nope.json")])
        assert result.exit_code != 0


class TestEvaluate:
    def test_evaluate(self, runner, basis_file):
        result = runner.invoke(
            main, ["evaluate", basis_file, "--rr", "1.0,0.5,-0.2", "-f", "mu=8"]
        )
        assert result.exit_code == 0, result.output
        lines = result.output.strip().splitlines()
        assert "value" in lines[0]
        assert "|grad|" not in lines[0]
        assert len(lines) == 2 + 6

    def test_evaluate_with_grad(self, runner, basis_file):
        result = runner.invoke(
            main, ["evaluate", basis_file, "--rr", "1.0,0.5,-0.2", "-f", "mu=8", "--grad"]
        )
        assert result.exit_code == 0, result.output
        assert "|grad|" in result.output

    def test_evaluate_at_origin_with_grad(self, runner, basis_file):
        result = runner.invoke(
            main, ["evaluate", basis_file, "--rr", "0,0,0", "-f", "mu=8", "--grad"]
        )
        assert result.exit_code == 1
        assert "Evaluation error" in result.output

    def test_evaluate_missing_field(self, runner, basis_file):
        result = runner.invoke(main, ["evaluate", basis_file, "--rr", "1.0,0.5,-0.2"])
        assert result.exit_code == 1
        assert "Evaluation error" in result.output

    def test_bad_field_spec(self, runner, basis_file):
        result = runner.invoke(main, ["evaluate", basis_file, "-f", "mu"])
        assert result.exit_code != 0

    def test_bad_vector(self, runner, radial_file):
        result = runner.invoke(main, ["evaluate", radial_file, "--rr", "1.0,abc,0"])
        assert result.exit_code != 0
