"""Functions to create complete acceleration functions: Newtonian gravity plus a GR correction."""

import jax

jax.config.update("jax_enable_x64", True)
import jax.numpy as jnp

from ppnx.accelerations.gr import explicit_correction, potential_correction
from ppnx.accelerations.gr_implicit import first_pair_overrides, implicit_correction
from ppnx.accelerations.newtonian import newtonian_gravity
from ppnx.data.constants import (
    DEFAULT_MAX_ITERATIONS,
    GRAVITATIONAL_CONSTANT,
    SPEED_OF_LIGHT,
)
from ppnx.utils.states import BodySnapshot

GR_MODELS = ("explicit", "potential", "implicit")


def create_gr_acceleration_func(
    model: str = "implicit",
    acceleration_func_kwargs: dict | None = None,
) -> jax.tree_util.Partial:
    """Create and return a function that adds a GR correction to Newtonian gravity.

    Args:
        model (str):
            One of "explicit", "potential" or "implicit".
        acceleration_func_kwargs (dict | None):
            Optional settings. Recognized keys are "G" and "c" (default to the
            package constants), "ignore_first_pair" (implicit model only, skip the
            0-1 pair in the Newtonian part and restore it only for seeding the
            correction) and "max_iterations" (implicit model only).

    Returns:
        A jax.tree_util.Partial function that takes a BodySnapshot, ignores its
            accelerations, and returns the Newtonian accelerations plus the chosen
            correction.

    """
    if model not in GR_MODELS:
        raise ValueError(f"model must be one of {GR_MODELS}, got '{model}'")

    kwargs = {} if acceleration_func_kwargs is None else dict(acceleration_func_kwargs)
    G = kwargs.get("G", GRAVITATIONAL_CONSTANT)
    c = kwargs.get("c", SPEED_OF_LIGHT)
    ignore_first_pair = bool(kwargs.get("ignore_first_pair", False))
    max_iterations = int(kwargs.get("max_iterations", DEFAULT_MAX_ITERATIONS))

    def func(inputs: BodySnapshot) -> jnp.ndarray:
        a_newt = newtonian_gravity(
            inputs.positions,
            inputs.masses,
            G,
            ignore_first_pair=ignore_first_pair and model == "implicit",
        )
        bodies = inputs.replace(accelerations=a_newt)

        if model == "explicit":
            correction = explicit_correction(bodies, G, c)
        elif model == "potential":
            correction = potential_correction(bodies, G, c)
        else:
            overrides = None
            if ignore_first_pair and bodies.n_bodies >= 2:
                overrides = first_pair_overrides(bodies, G)
            correction, _, _ = implicit_correction(
                bodies,
                G,
                c,
                newtonian_overrides=overrides,
                max_iterations=max_iterations,
            )

        return a_newt + correction

    return jax.tree_util.Partial(func)
