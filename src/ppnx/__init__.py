from ppnx.accelerations import (
    apply_explicit_correction,
    apply_implicit_correction,
    apply_potential_correction,
    create_gr_acceleration_func,
    explicit_correction,
    first_pair_overrides,
    implicit_correction,
    newtonian_gravity,
    potential_correction,
)
from ppnx.corrector import GRCorrector
from ppnx.utils.states import BodySnapshot, ConvergenceInfo, GRWorkspace

__all__ = [
    "BodySnapshot",
    "ConvergenceInfo",
    "GRCorrector",
    "GRWorkspace",
    "apply_explicit_correction",
    "apply_implicit_correction",
    "apply_potential_correction",
    "create_gr_acceleration_func",
    "explicit_correction",
    "first_pair_overrides",
    "implicit_correction",
    "newtonian_gravity",
    "potential_correction",
]
