from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from .policy import PerturbationSolution
from .timing import Timings

Array = np.ndarray

FORMAT_VERSION = 1


class _SimulationLike(Protocol):
    variables: tuple[str, ...]
    deviations: Array
    shocks: Array
    steady_state: Array


def save_solution(solution: PerturbationSolution, path: str | Path) -> None:
    target = Path(path)
    t = solution.timings
    payload = {
        "format_version": FORMAT_VERSION,
        "model_name": solution.model_name,
        "algorithm": solution.algorithm,
        "variables": list(t.variables),
        "shocks": list(t.shocks),
        "past": list(t.past),
        "future": list(t.future),
        "static": list(t.static),
        "mixed": list(t.mixed),
        "steady_state": _to_list(solution.steady_state),
        "parameters": {name: float(value) for name, value in solution.parameters.items()},
        "first_order": _to_list(solution.first_order),
        "g2": _to_list(solution.g2),
        "g3": _to_list(solution.g3),
        "shock_covariance": _to_list(solution.shock_covariance),
        "eigenvalues": _to_list(solution.eigenvalues),
    }
    target.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")


def load_solution(path: str | Path) -> PerturbationSolution:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    version = payload.get("format_version")
    if version != FORMAT_VERSION:
        raise ValueError(f"Unsupported solution format version: {version!r}")
    n_past = len(payload["past"])
    n_shocks = len(payload["shocks"])
    return PerturbationSolution(
        algorithm=payload["algorithm"],
        timings=_timings_from_payload(payload),
        steady_state=np.asarray(payload["steady_state"], dtype=float),
        parameters=payload["parameters"],
        first_order=np.asarray(payload["first_order"], dtype=float).reshape(
            -1, n_past + n_shocks
        ),
        g2=_to_array(payload.get("g2")),
        g3=_to_array(payload.get("g3")),
        shock_covariance=np.asarray(payload["shock_covariance"], dtype=float).reshape(
            n_shocks, n_shocks
        ),
        eigenvalues=_to_array(payload.get("eigenvalues")),
        model_name=payload.get("model_name", "model"),
    )


def save_simulation(result: _SimulationLike, path: str | Path) -> None:
    target = Path(path)
    payload = {
        "variables": list(result.variables),
        "deviations": _to_list(result.deviations),
        "levels": _to_list(np.asarray(result.deviations) + np.asarray(result.steady_state)),
        "shocks": _to_list(result.shocks),
        "steady_state": _to_list(result.steady_state),
    }
    target.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")


def _timings_from_payload(payload: dict[str, Any]) -> Timings:
    variables = tuple(payload["variables"])
    position = {name: i for i, name in enumerate(variables)}

    def _index(key: str) -> Array:
        names = payload[key]
        unknown = [name for name in names if name not in position]
        if unknown:
            raise ValueError(f"'{key}' lists unknown variables: {unknown}")
        return np.array([position[name] for name in names], dtype=int)

    return Timings(
        variables=variables,
        shocks=tuple(payload["shocks"]),
        past=tuple(payload["past"]),
        future=tuple(payload["future"]),
        static=tuple(payload["static"]),
        mixed=tuple(payload["mixed"]),
        past_idx=_index("past"),
        future_idx=_index("future"),
        static_idx=_index("static"),
        mixed_idx=_index("mixed"),
    )


def _to_list(array: Array | None) -> Any:
    if array is None:
        return None
    return np.asarray(array, dtype=float).tolist()


def _to_array(value: Any) -> Array | None:
    if value is None:
        return None
    return np.asarray(value, dtype=float)
