# Single-source post-Newtonian corrections, following the "gr" and "gr_potential"
# effects of REBOUNDx, Tamayo et al. (2020) (DOI: 10.1093/mnras/stz2870).
# The explicit correction is from Benitez & Gallardo (2008) (DOI:
# 10.1007/s10569-007-9110-z), the potential correction from Nobili & Roxburgh
# (1986) (bibcode: 1986IAUS..114..105N).
# Both treat body 0 as the only source of relativistic effects, so they are only
# appropriate when it dominates the mass of the system.

import jax

jax.config.update("jax_enable_x64", True)
import jax.numpy as jnp

from ppnx.data.constants import GRAVITATIONAL_CONSTANT, SPEED_OF_LIGHT
from ppnx.utils.checks import check_n_variational
from ppnx.utils.states import BodySnapshot


@jax.jit
def _explicit_kernel(positions, velocities, masses, active, G, c):
    N = positions.shape[0]
    # body 0 is the source, everything else is corrected relative to it
    planets = active & (jnp.arange(N) > 0)

    dx = positions - positions[0]  # (N,3)
    dv = velocities - velocities[0]  # (N,3)
    r2 = jnp.where(planets, jnp.sum(dx * dx, axis=-1), 1.0)  # (N,)
    r = jnp.sqrt(r2)

    gm = G * masses[0]
    alpha = gm / (r2 * r * c * c)
    v2 = jnp.sum(dv * dv, axis=-1)
    beta = 4.0 * gm / r - v2
    gamma = 4.0 * jnp.sum(dv * dx, axis=-1)

    da = alpha[:, None] * (beta[:, None] * dx + gamma[:, None] * dv)
    da = jnp.where(planets[:, None], da, 0.0)

    # back-reaction on the source keeps sum(m * da) at zero, a massless source has
    # no correction to balance
    m0 = jnp.where(masses[0] > 0, masses[0], 1.0)
    massratio = jnp.where(masses[0] > 0, masses / m0, 0.0)
    da = da.at[0].add(-jnp.sum(massratio[:, None] * da, axis=0))
    return da


@jax.jit
def _potential_kernel(positions, masses, active, G, c):
    N = positions.shape[0]
    planets = active & (jnp.arange(N) > 0)

    dx = positions - positions[0]
    r2 = jnp.where(planets, jnp.sum(dx * dx, axis=-1), 1.0)

    gm = G * masses[0]
    prefac = 6.0 * gm * gm / (c * c * r2 * r2)
    da = -prefac[:, None] * dx
    return jnp.where(planets[:, None], da, 0.0)


def _active(bodies, n_variational):
    n = bodies.n_bodies
    return jnp.arange(n) < (n - n_variational)


def explicit_correction(
    bodies: BodySnapshot,
    G: float = GRAVITATIONAL_CONSTANT,
    c: float = SPEED_OF_LIGHT,
    n_variational: int = 0,
) -> jnp.ndarray:
    """Post-Newtonian correction from a single dominant mass.

    Each body i > 0 receives the correction due to body 0 alone, and body 0 receives
    the mass-weighted opposite of their sum, so the total correction carries no net
    momentum. A massless body 0 sources nothing and the correction is zero.

    Args:
        bodies (BodySnapshot): The current state. Body 0 is the dominant mass.
        G (float): Gravitational constant.
        c (float): Speed of light.
        n_variational (int): Number of trailing variational particles to leave alone.

    Returns:
        jnp.ndarray: (N,3) corrections to add to the accelerations.
    """
    check_n_variational(bodies.n_bodies, n_variational)
    if bodies.n_bodies == 0:
        return jnp.zeros((0, 3))
    return _explicit_kernel(
        jnp.asarray(bodies.positions),
        jnp.asarray(bodies.velocities),
        jnp.asarray(bodies.masses),
        _active(bodies, n_variational),
        G,
        c,
    )


def potential_correction(
    bodies: BodySnapshot,
    G: float = GRAVITATIONAL_CONSTANT,
    c: float = SPEED_OF_LIGHT,
    n_variational: int = 0,
) -> jnp.ndarray:
    """Radial correction from the potential of a single dominant mass.

    Only positions enter, velocities are ignored and body 0 is left untouched.

    Args:
        bodies (BodySnapshot): The current state. Body 0 is the dominant mass.
        G (float): Gravitational constant.
        c (float): Speed of light.
        n_variational (int): Number of trailing variational particles to leave alone.

    Returns:
        jnp.ndarray: (N,3) corrections to add to the accelerations.
    """
    check_n_variational(bodies.n_bodies, n_variational)
    if bodies.n_bodies == 0:
        return jnp.zeros((0, 3))
    return _potential_kernel(
        jnp.asarray(bodies.positions),
        jnp.asarray(bodies.masses),
        _active(bodies, n_variational),
        G,
        c,
    )


def apply_explicit_correction(
    bodies: BodySnapshot,
    G: float = GRAVITATIONAL_CONSTANT,
    c: float = SPEED_OF_LIGHT,
    n_variational: int = 0,
) -> BodySnapshot:
    da = explicit_correction(bodies, G, c, n_variational=n_variational)
    return bodies.replace(accelerations=bodies.accelerations + da)


def apply_potential_correction(
    bodies: BodySnapshot,
    G: float = GRAVITATIONAL_CONSTANT,
    c: float = SPEED_OF_LIGHT,
    n_variational: int = 0,
) -> BodySnapshot:
    da = potential_correction(bodies, G, c, n_variational=n_variational)
    return bodies.replace(accelerations=bodies.accelerations + da)
