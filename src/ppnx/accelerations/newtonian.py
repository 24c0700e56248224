import jax

jax.config.update("jax_enable_x64", True)
from functools import partial

import jax.numpy as jnp


@partial(jax.jit, static_argnames=["ignore_first_pair"])
def newtonian_gravity(
    positions: jnp.ndarray,
    masses: jnp.ndarray,
    G: float,
    ignore_first_pair: bool = False,
) -> jnp.ndarray:
    """
    At an instantaneous moment in time, calculate the acceleration on a set of particles
    due to Newtonian gravity.

    This stands in for the host simulation's gravity solver: the correctors expect
    snapshots whose accelerations were filled by something like it.

    Args:
        positions: (N,3) positions of the particles.
        masses: (N,) masses of the particles.
        G: Gravitational constant.
        ignore_first_pair: If True, skip the interaction between particles 0 and 1,
            the way a host does when it treats that pair separately (e.g. a
            Wisdom-Holman map built around a central binary).

    Returns:
        accelerations: Accelerations on each particle due to Newtonian gravity

    """
    # Calculate pairwise differences
    N = positions.shape[0]
    dx = positions[:, None, :] - positions[None, :, :]  # (N,N,3)
    r2 = jnp.sum(dx * dx, axis=-1)  # (N,N)

    # Mask for i!=j calculations
    mask = ~jnp.eye(N, dtype=bool)  # (N,N)
    if ignore_first_pair and N > 1:
        mask = mask.at[0, 1].set(False).at[1, 0].set(False)

    r2 = jnp.where(mask, r2, 1.0)
    prefac = jnp.where(mask, 1.0 / (r2 * jnp.sqrt(r2)), 0.0)
    a_newt = -G * jnp.sum(prefac[:, :, None] * dx * masses[None, :, None], axis=1)
    return a_newt


def pair_newtonian_acceleration(
    positions: jnp.ndarray, masses: jnp.ndarray, G: float, i: int, j: int
) -> tuple:
    """Newtonian pull between particles i and j alone.

    Returns:
        tuple: (acceleration on i due to j, acceleration on j due to i)
    """
    dx = positions[i] - positions[j]
    r2 = jnp.sum(dx * dx)
    prefact = -G / (r2 * jnp.sqrt(r2))
    return prefact * masses[j] * dx, -prefact * masses[i] * dx
