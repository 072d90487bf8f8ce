from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import typer

from .exceptions import MacroPerturbError
from .io import parse_model_file
from .moments import compute_unconditional_moments
from .pipeline import ALGORITHMS, solve
from .policy import PerturbationSolution
from .serialization import load_solution, save_simulation, save_solution
from .simulation import (
    SimulationResult,
    draw_shocks,
    generalized_irf,
    impulse_response,
    simulate,
)
from .steady_state import SteadyStateOptions, solve_steady_state

app = typer.Typer(help="Perturbation solutions of DSGE models from equation files")


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s"
        )


def _parse_overrides(params: list[str] | None) -> dict[str, float]:
    overrides: dict[str, float] = {}
    for item in params or []:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"expected name=value, got '{item}'", param_hint="--param")
        try:
            overrides[name.strip()] = float(value)
        except ValueError:
            raise typer.BadParameter(
                f"value of '{name.strip()}' is not a number", param_hint="--param"
            ) from None
    return overrides


def _resolve_shock(solution: PerturbationSolution, shock: str) -> int:
    if shock in solution.shocks:
        return solution.shock_index(shock)
    try:
        index = int(shock)
    except ValueError:
        raise typer.BadParameter(
            f"unknown shock '{shock}'; expected one of {', '.join(solution.shocks)}",
            param_hint="--shock",
        ) from None
    if index < 0 or index >= solution.n_shocks:
        raise typer.BadParameter(f"shock index {index} out of bounds", param_hint="--shock")
    return index


def _fail(exc: Exception) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


def _load(path: str) -> PerturbationSolution:
    try:
        return load_solution(path)
    except KeyError as exc:
        raise _fail(ValueError(f"solution file {path} is missing field {exc}")) from exc
    except (OSError, ValueError) as exc:
        raise _fail(exc) from exc


@app.command("steady-state")
def steady_state_cmd(
    model: Annotated[str, typer.Option(help="Model file path")],
    output: Annotated[str | None, typer.Option(help="Output JSON path")] = None,
    symbolic: Annotated[bool, typer.Option(help="Try closed-form block solutions")] = False,
    tol: Annotated[float, typer.Option(help="Residual tolerance")] = 1e-8,
    restarts: Annotated[int, typer.Option(help="Restarts per failing block")] = 0,
    param: Annotated[list[str] | None, typer.Option(help="Parameter override name=value")] = None,
) -> None:
    try:
        options = SteadyStateOptions(tol=tol, restarts=restarts, symbolic=symbolic)
        spec = parse_model_file(model)
        result = solve_steady_state(
            spec.to_model(),
            _parse_overrides(param),
            options=options,
            initial_guess=spec.initial_guess or None,
        )
    except (MacroPerturbError, ValueError) as exc:
        raise _fail(exc) from exc

    for name, value in zip(result.variables, result.values):
        typer.echo(f"{name:>20s} = {value:.10g}")
    for name, value in result.calibrated.items():
        typer.echo(f"{name:>20s} = {value:.10g}  (calibrated)")
    if output is not None:
        payload = {
            "variables": {name: float(v) for name, v in zip(result.variables, result.values)},
            "calibrated": dict(result.calibrated),
            "max_residual": result.max_residual,
        }
        Path(output).write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        typer.echo(f"Steady state written to {output}")


@app.command("solve")
def solve_cmd(
    model: Annotated[str, typer.Option(help="Model file path")],
    output: Annotated[str, typer.Option(help="Output solution JSON path")],
    algorithm: Annotated[
        str, typer.Option(help=f"One of {', '.join(ALGORITHMS)}")
    ] = "first_order",
    symbolic: Annotated[bool, typer.Option(help="Try closed-form block solutions")] = False,
    param: Annotated[list[str] | None, typer.Option(help="Parameter override name=value")] = None,
) -> None:
    if algorithm not in ALGORITHMS:
        raise typer.BadParameter(
            f"expected one of {', '.join(ALGORITHMS)}", param_hint="--algorithm"
        )
    try:
        spec = parse_model_file(model)
        solution = solve(
            spec.to_model(),
            algorithm,
            _parse_overrides(param),
            symbolic=symbolic,
            initial_guess=spec.initial_guess or None,
        )
    except (MacroPerturbError, ValueError) as exc:
        raise _fail(exc) from exc
    save_solution(solution, output)
    typer.echo(f"{algorithm} solution written to {output}")


@app.command("irf")
def irf_cmd(
    solution: Annotated[str, typer.Option(help="Path to saved solution JSON")],
    output: Annotated[str, typer.Option(help="Output IRF JSON path")],
    shock: Annotated[str, typer.Option(help="Shock name or index")] = "0",
    horizon: Annotated[int, typer.Option(help="IRF horizon")] = 40,
    shock_size: Annotated[float, typer.Option(help="Shock size")] = 1.0,
    generalized: Annotated[
        bool, typer.Option(help="Subtract the no-shock baseline path")
    ] = False,
) -> None:
    loaded = _load(solution)
    index = _resolve_shock(loaded, shock)
    try:
        if generalized:
            girf = generalized_irf(
                loaded, horizon=horizon, shock_index=index, shock_size=shock_size
            )
            result = SimulationResult(
                variables=girf.variables,
                deviations=girf.response,
                shocks=girf.shocked.shocks,
                steady_state=girf.shocked.steady_state,
            )
        else:
            result = impulse_response(
                loaded, horizon=horizon, shock_index=index, shock_size=shock_size
            )
    except (MacroPerturbError, ValueError) as exc:
        raise _fail(exc) from exc
    save_simulation(result, output)
    typer.echo(f"IRF written to {output}")


@app.command("simulate")
def simulate_cmd(
    solution: Annotated[str, typer.Option(help="Path to saved solution JSON")],
    output: Annotated[str, typer.Option(help="Output simulation JSON path")],
    periods: Annotated[int, typer.Option(help="Number of simulated periods")] = 100,
    seed: Annotated[int, typer.Option(help="RNG seed")] = 0,
    first_order_only: Annotated[
        bool, typer.Option(help="Ignore second- and third-order terms")
    ] = False,
) -> None:
    loaded = _load(solution)
    try:
        shocks = draw_shocks(loaded, periods, seed=seed)
        result = simulate(loaded, shocks, include_higher_order=not first_order_only)
    except (MacroPerturbError, ValueError) as exc:
        raise _fail(exc) from exc
    save_simulation(result, output)
    typer.echo(f"Simulation written to {output}")


@app.command("moments")
def moments_cmd(
    solution: Annotated[str, typer.Option(help="Path to saved solution JSON")],
    max_lag: Annotated[int, typer.Option(help="Largest autocorrelation lag")] = 1,
) -> None:
    loaded = _load(solution)
    try:
        moments = compute_unconditional_moments(loaded, max_lag=max_lag)
    except (MacroPerturbError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(f"{'variable':>20s} {'mean':>14s} {'std':>14s}")
    for i, name in enumerate(moments.variables):
        line = f"{name:>20s} {moments.mean[i]:14.6g} {moments.std[i]:14.6g}"
        if moments.autocorrelations is not None:
            line += "".join(f" {value:8.4f}" for value in moments.autocorrelations[:, i])
        typer.echo(line)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
