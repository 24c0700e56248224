import jax

jax.config.update("jax_enable_x64", True)

from ppnx.accelerations.create_acc_funcs import GR_MODELS, create_gr_acceleration_func
from ppnx.accelerations.gr import (
    apply_explicit_correction,
    apply_potential_correction,
    explicit_correction,
    potential_correction,
)
from ppnx.accelerations.gr_implicit import (
    apply_implicit_correction,
    first_pair_overrides,
    implicit_correction,
)
from ppnx.accelerations.newtonian import newtonian_gravity
