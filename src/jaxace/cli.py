"""
Command-Line Interface for JAXACE.

Provides the ``jaxace`` command for inspecting and evaluating bases saved
with :meth:`jaxace.basis.OneParticleBasis.save`.

Requires the ``cli`` optional dependency group::

    pip install jaxace[cli]

Usage::

    jaxace info basis.json
    jaxace evaluate basis.json --rr 1.0,0.5,-0.2 --field mu=8 --grad
"""

from __future__ import annotations

import sys

try:
    import click
except ImportError:
    print(
        "Error: click is required for the jaxace CLI. " "Install it with: pip install jaxace[cli]",
        file=sys.stderr,
    )
    sys.exit(1)


def _parse_vector(text: str) -> list[float]:
    """
    Parse a comma-separated vector such as ``"1.0,0.5,-0.2"``.
    """
    try:
        return [float(v) for v in text.split(",")]
    except ValueError:
        raise click.BadParameter(
            f"Could not parse vector '{text}': expected numbers separated by commas"
        ) from None


def _parse_field(spec: str) -> tuple[str, object]:
    """
    Parse a state field specification.

    Formats:
        "name=value"       → scalar field (int if it parses as int, else float)
        "name=v1,v2,..."   → vector field

    Parameters
    ----------
    spec : str
        Field specification string.

    Returns
    -------
    name, value : tuple
        Field name and parsed value.
    """
    if "=" not in spec:
        raise click.BadParameter(f"Field spec '{spec}' must be 'name=value' or 'name=v1,v2,...'")
    name, value_str = (s.strip() for s in spec.split("=", maxsplit=1))
    if "," in value_str:
        return name, _parse_vector(value_str)
    for cast in (int, float):
        try:
            return name, cast(value_str)
        except ValueError:
            continue
    raise click.BadParameter(f"Could not parse value for field '{name}': '{value_str}'")


@click.group()
@click.version_option(package_name="jaxace")
def main():
    """JAXACE: one-particle bases for ACE-style descriptors."""
    pass


# =============================================================================
# info
# =============================================================================


@main.command()
@click.argument("basis_file", type=click.Path(exists=True))
def info(basis_file):
    """Show a summary of a saved basis.

    Example:

        jaxace info basis.json
    """
    from .basis import OneParticleBasis

    basis = OneParticleBasis.load(basis_file)
    click.echo(basis.summary())


# =============================================================================
# evaluate
# =============================================================================


@main.command()
@click.argument("basis_file", type=click.Path(exists=True))
@click.option("--rr", default=None, help='Displacement vector, e.g. "1.0,0.5,-0.2".')
@click.option(
    "--field",
    "-f",
    multiple=True,
    help='Additional state field: "name=value" or "name=v1,v2,...".',
)
@click.option("--grad", is_flag=True, help="Also print gradient norms.")
def evaluate(basis_file, rr, field, grad):
    """Evaluate a saved basis at one particle state.

    Example:

        jaxace evaluate basis.json --rr 1.0,0.5,-0.2 -f mu=8 --grad
    """
    import numpy as np

    from .basis import OneParticleBasis
    from .exceptions import JaxaceError
    from .states import State

    basis = OneParticleBasis.load(basis_file)

    fields = dict(_parse_field(f) for f in field)
    if rr is not None:
        fields["rr"] = _parse_vector(rr)
    X = State(fields)

    try:
        if grad:
            A, dA = basis.evaluate_ed(X)
        else:
            A, dA = basis.evaluate(X), None
    except (JaxaceError, KeyError) as e:
        click.echo(f"Evaluation error: {e}", err=True)
        raise SystemExit(1) from None

    spec = basis.get_spec()
    A = np.asarray(A)
    norms = None
    if dA is not None and len(A):
        norms = np.zeros(len(A))
        for name, value in dA.items():
            value = np.asarray(value).reshape(len(A), -1)
            norms = norms + np.sum(np.abs(value) ** 2, axis=1)
        norms = np.sqrt(norms)

    header = f"{'#':>4}  {'entry':<30} {'value':>14}"
    if norms is not None:
        header += f" {'|grad|':>14}"
    click.echo(header)
    click.echo("-" * len(header))
    for k, a in enumerate(A):
        line = f"{k:>4}  {str(dict(spec[k])):<30} {a:>14.6g}"
        if norms is not None:
            line += f" {norms[k]:>14.6g}"
        click.echo(line)
