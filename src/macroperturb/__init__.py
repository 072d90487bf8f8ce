"""macroperturb — Perturbation solutions of DSGE models from equation text.

Models are written as time-indexed equations (``k[-1]``, ``c[1]``,
``eps[x]``, ``y[ss]``) with parameter values, calibration equations and
bounds.  The package normalizes them into a canonical system, solves the
non-stochastic steady state block by block, differentiates symbolically and
computes first-, second- and third-order perturbation solutions via the
generalized Schur (QZ) decomposition and generalized Sylvester equations.
Linear time iteration is available as an independent first-order solver.

Key references:
    Blanchard and Kahn (1980), Econometrica 48(5).
    Schmitt-Grohe and Uribe (2004), JEDC 28, 755-775.
    Rendahl (2017), IHS Economics Series 330.
    Andreasen, Fernandez-Villaverde, and Rubio-Ramirez (2018), REStud 85(1).
"""

from .blocks import Block, BlockStructure, analyze_blocks, build_incidence
from .derivatives import DerivativeTensors, compute_derivatives
from .exceptions import (
    BlanchardKahnError,
    ConvergenceError,
    DifferentiationError,
    MacroPerturbError,
    ParseError,
    SingularSolutionError,
    SteadyStateError,
)
from .io import ModelFileSpec, load_model, parse_model_file
from .linear_time_iteration import solve_linear_time_iteration
from .model import Bound, CalibrationEquation, Equation, Model, Variable
from .moments import MomentsResult, compute_unconditional_moments
from .parser import parse_equation, parse_model, parse_parameters
from .pipeline import ALGORITHMS, solve
from .policy import PerturbationSolution
from .qz import BKDiagnostics
from .serialization import load_solution, save_simulation, save_solution
from .simulation import (
    GIRFResult,
    SimulationResult,
    draw_shocks,
    generalized_irf,
    impulse_response,
    simulate,
)
from .solver import FirstOrderSolution, solve_first_order
from .solver_second_order import SecondOrderSolution, solve_second_order
from .solver_third_order import ThirdOrderSolution, solve_third_order
from .steady_state import (
    SteadyStateCache,
    SteadyStateOptions,
    SteadyStateResult,
    solve_steady_state,
)
from .tensor_ops import mdot, sdot
from .timing import Timings, build_timings
from .version import __version__

__all__ = [
    "__version__",
    "ALGORITHMS",
    "BKDiagnostics",
    "BlanchardKahnError",
    "Block",
    "BlockStructure",
    "Bound",
    "CalibrationEquation",
    "ConvergenceError",
    "DerivativeTensors",
    "DifferentiationError",
    "Equation",
    "FirstOrderSolution",
    "GIRFResult",
    "MacroPerturbError",
    "Model",
    "ModelFileSpec",
    "MomentsResult",
    "ParseError",
    "PerturbationSolution",
    "SecondOrderSolution",
    "SimulationResult",
    "SingularSolutionError",
    "SteadyStateCache",
    "SteadyStateError",
    "SteadyStateOptions",
    "SteadyStateResult",
    "ThirdOrderSolution",
    "Timings",
    "Variable",
    "analyze_blocks",
    "build_incidence",
    "build_timings",
    "compute_derivatives",
    "compute_unconditional_moments",
    "draw_shocks",
    "generalized_irf",
    "impulse_response",
    "load_model",
    "load_solution",
    "mdot",
    "parse_equation",
    "parse_model",
    "parse_model_file",
    "parse_parameters",
    "save_simulation",
    "save_solution",
    "sdot",
    "simulate",
    "solve",
    "solve_first_order",
    "solve_linear_time_iteration",
    "solve_second_order",
    "solve_third_order",
    "solve_steady_state",
]
