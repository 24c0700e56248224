# Multi-body post-Newtonian correction, the jaxified equivalent of rebx_gr_implicit in
# REBOUNDx, Tamayo et al. (2020) (DOI: 10.1093/mnras/stz2870). The equations of
# motion are the Einstein-Infeld-Hoffmann equations as written in Newhall et al.
# (1983) (bibcode: 1983A&A...125..150N). The terms that involve the accelerations of
# the other bodies make the system implicit, so they are solved by fixed-point
# iteration seeded with the Newtonian accelerations supplied by the host.

import jax

jax.config.update("jax_enable_x64", True)
from functools import partial

import jax.numpy as jnp

from ppnx.accelerations.newtonian import pair_newtonian_acceleration
from ppnx.data.constants import (
    CONVERGENCE_TOLERANCE,
    DEFAULT_MAX_ITERATIONS,
    GRAVITATIONAL_CONSTANT,
    SPEED_OF_LIGHT,
)
from ppnx.utils.checks import check_n_variational
from ppnx.utils.states import BodySnapshot, ConvergenceInfo, GRWorkspace
from ppnx.utils.workspace import active_mask, ensure_capacity, pad_rows


def _pair_geometry(positions, active):
    N = positions.shape[0]
    pair_mask = active[:, None] & active[None, :] & ~jnp.eye(N, dtype=bool)  # (N,N)

    dx = positions[:, None, :] - positions[None, :, :]  # (N,N,3), x_i - x_j
    # padded rows sit on top of each other, keep them away from the divisions
    r2 = jnp.where(pair_mask, jnp.sum(dx * dx, axis=-1), 1.0)  # (N,N)
    r = jnp.sqrt(r2)
    r3 = r2 * r
    return pair_mask, dx, r, r2, r3


def _constant_terms(velocities, gms, pair_mask, dx, r, r2, r3, c2):
    inv_r = jnp.where(pair_mask, 1.0 / r, 0.0)

    # sum over k!=i of G m_k / r_ik, shared by every pair that has i as target
    # (a1 below) or as source (a2 below)
    potential = jnp.sum(gms[None, :] * inv_r, axis=1)  # (N,)
    a1 = (4.0 / c2) * potential[:, None]
    a2 = (1.0 / c2) * potential[None, :]

    v2 = jnp.sum(velocities * velocities, axis=-1)  # (N,)
    a3 = -v2[:, None] / c2
    a4 = -2.0 * v2[None, :] / c2
    a5 = (4.0 / c2) * (velocities @ velocities.T)

    a6_0 = jnp.sum(dx * velocities[None, :, :], axis=-1)  # dx_ij . v_j
    a6 = (3.0 / (2.0 * c2)) * a6_0**2 / r2

    factor1 = a1 + a2 + a3 + a4 + a5 + a6
    part1 = gms[None, :, None] * dx * (factor1 / r3)[:, :, None]

    factor2 = jnp.sum(
        dx * (4.0 * velocities[:, None, :] - 3.0 * velocities[None, :, :]), axis=-1
    )
    dv = velocities[:, None, :] - velocities[None, :, :]  # (N,N,3)
    part2 = gms[None, :, None] * (factor2 / r3)[:, :, None] * dv / c2

    return jnp.sum(jnp.where(pair_mask[:, :, None], part1 + part2, 0.0), axis=1)


@partial(jax.jit, static_argnames=["max_iterations"])
def _implicit_kernel(
    positions,
    velocities,
    masses,
    accelerations,
    active,
    override_mask,
    override_values,
    workspace,
    G,
    c,
    tolerance,
    max_iterations,
):
    c2 = c * c
    gms = jnp.where(active, G * masses, 0.0)

    # Newtonian capture, with host-provided replacements where requested
    newtonian = jnp.where(override_mask[:, None], override_values, accelerations)
    newtonian = jnp.where(active[:, None], newtonian, 0.0)

    pair_mask, dx, r, r2, r3 = _pair_geometry(positions, active)

    constant = _constant_terms(velocities, gms, pair_mask, dx, r, r2, r3, c2)

    # weights of source j in the update of target i
    w_proj = jnp.where(pair_mask, gms[None, :] / (2.0 * c2 * r3), 0.0)
    w_direct = jnp.where(pair_mask, 3.5 * gms[None, :] / (c2 * r), 0.0)

    def pairwise_update(estimate):
        rdota = jnp.sum(dx * estimate[None, :, :], axis=-1)  # dx_ij . a_j
        return jnp.sum(
            (w_proj * rdota)[:, :, None] * dx
            + w_direct[:, :, None] * estimate[None, :, :],
            axis=1,
        )

    def do_nothing(carry):
        return carry

    def do_iteration(carry):
        previous, current, _, rounds, history = carry
        # swap roles, the old estimate becomes the reference for this round
        previous, current = current, pairwise_update(newtonian + constant + current)

        total = newtonian + constant + current
        change = jnp.sum((current - previous) ** 2, axis=-1)
        norm = jnp.sum(total * total, axis=-1)
        ratios = change / norm
        ratio = jnp.max(
            jnp.where(active & jnp.isfinite(ratios), ratios, 0.0), initial=0.0
        )
        history = history.at[rounds].set(ratio)
        return previous, current, ratio, rounds + 1, history

    def body_fn(carry, _):
        ratio = carry[2]
        should_continue = ratio >= tolerance
        new_carry = jax.lax.cond(should_continue, do_iteration, do_nothing, carry)
        return new_carry, None

    init_carry = (
        jnp.zeros_like(workspace.previous),
        jnp.zeros_like(workspace.current),
        jnp.array(jnp.inf, dtype=jnp.float64),
        jnp.array(0, dtype=jnp.int32),
        jnp.full((max_iterations,), jnp.nan, dtype=jnp.float64),
    )
    final_carry, _ = jax.lax.scan(body_fn, init_carry, None, length=max_iterations)
    previous, current, ratio, rounds, history = final_carry

    correction = jnp.where(active[:, None], constant + current, 0.0)

    workspace = GRWorkspace(
        newtonian=newtonian, constant=constant, previous=previous, current=current
    )
    info = ConvergenceInfo(
        rounds=rounds, converged=ratio < tolerance, ratio_history=history
    )
    return correction, workspace, info


def first_pair_overrides(bodies: BodySnapshot, G: float = GRAVITATIONAL_CONSTANT) -> list:
    """Newtonian overrides for a host that skipped the interaction of bodies 0 and 1.

    Each of the two bodies gets its incoming acceleration plus the exact Newtonian
    pull of the other, so the implicit corrector is seeded with the complete
    Newtonian field.

    Args:
        bodies (BodySnapshot): The current state, with at least two bodies.
        G (float): Gravitational constant.

    Returns:
        list: [(0, a_0), (1, a_1)], ready to pass as ``newtonian_overrides``.
    """
    if bodies.n_bodies < 2:
        raise ValueError("first_pair_overrides requires at least two bodies")
    a0, a1 = pair_newtonian_acceleration(
        jnp.asarray(bodies.positions), jnp.asarray(bodies.masses), G, 0, 1
    )
    acc = jnp.asarray(bodies.accelerations)
    return [(0, acc[0] + a0), (1, acc[1] + a1)]


def _override_arrays(newtonian_overrides, n_real, capacity):
    override_mask = jnp.zeros((capacity,), dtype=bool)
    override_values = jnp.zeros((capacity, 3))
    for index, value in newtonian_overrides or ():
        if not 0 <= index < n_real:
            raise ValueError(
                f"override index {index} does not refer to one of the {n_real} bodies"
            )
        override_mask = override_mask.at[index].set(True)
        override_values = override_values.at[index].set(jnp.asarray(value))
    return override_mask, override_values


def implicit_correction(
    bodies: BodySnapshot,
    G: float = GRAVITATIONAL_CONSTANT,
    c: float = SPEED_OF_LIGHT,
    newtonian_overrides=None,
    workspace: GRWorkspace | None = None,
    n_variational: int = 0,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tolerance: float = CONVERGENCE_TOLERANCE,
) -> tuple:
    """Full multi-body post-Newtonian correction.

    Every body is treated the same way, there is no special source. The
    velocity-dependent part of the Einstein-Infeld-Hoffmann equations is evaluated
    once, then the part that depends on the other bodies' corrected accelerations is
    iterated until the largest squared relative change of any body's acceleration
    drops below ``tolerance``, or ``max_iterations`` rounds have run. Running out of
    rounds is not an error, the last estimate is used and ``info.converged`` is
    False.

    Args:
        bodies (BodySnapshot):
            The current state. The accelerations must hold the Newtonian values.
        G (float):
            Gravitational constant.
        c (float):
            Speed of light.
        newtonian_overrides (Sequence[tuple[int, array]] | None):
            (index, acceleration) pairs replacing the Newtonian acceleration of
            specific bodies, see ``first_pair_overrides``.
        workspace (GRWorkspace | None):
            Scratch buffers from a previous call. Grown if too small, allocated if
            None.
        n_variational (int):
            Number of trailing variational particles, which receive no correction.
        max_iterations (int):
            Maximum number of fixed-point rounds.
        tolerance (float):
            Convergence threshold on the squared relative change.

    Returns:
        tuple:
            correction (jnp.ndarray):
                (N,3) corrections to add to the accelerations.
            workspace (GRWorkspace):
                The buffers after this call. Keep it for the next call.
            info (ConvergenceInfo):
                Number of rounds run, whether the tolerance was met, and the
                per-round convergence metric.
    """
    n = bodies.n_bodies
    check_n_variational(n, n_variational)
    n_real = n - n_variational
    workspace = ensure_capacity(workspace, n)
    capacity = workspace.capacity

    override_mask, override_values = _override_arrays(
        newtonian_overrides, n_real, capacity
    )

    correction, workspace, info = _implicit_kernel(
        pad_rows(jnp.asarray(bodies.positions), capacity),
        pad_rows(jnp.asarray(bodies.velocities), capacity),
        pad_rows(jnp.asarray(bodies.masses), capacity),
        pad_rows(jnp.asarray(bodies.accelerations), capacity),
        active_mask(n_real, capacity),
        override_mask,
        override_values,
        workspace,
        G,
        c,
        tolerance,
        max_iterations,
    )
    return correction[:n], workspace, info


def apply_implicit_correction(
    bodies: BodySnapshot,
    G: float = GRAVITATIONAL_CONSTANT,
    c: float = SPEED_OF_LIGHT,
    ignore_first_pair: bool = False,
    newtonian_overrides=None,
    workspace: GRWorkspace | None = None,
    n_variational: int = 0,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tolerance: float = CONVERGENCE_TOLERANCE,
) -> BodySnapshot:
    """Return a copy of ``bodies`` with the implicit correction added.

    With ``ignore_first_pair`` the host's Newtonian accelerations are assumed to lack
    the 0-1 interaction, which is then restored through ``first_pair_overrides``
    before the correction is computed. The accelerations of the returned snapshot
    still lack it: only the correction is added.
    """
    overrides = list(newtonian_overrides or [])
    if ignore_first_pair and bodies.n_bodies - n_variational >= 2:
        overrides = first_pair_overrides(bodies, G) + overrides
    correction, _, _ = implicit_correction(
        bodies,
        G,
        c,
        newtonian_overrides=overrides,
        workspace=workspace,
        n_variational=n_variational,
        max_iterations=max_iterations,
        tolerance=tolerance,
    )
    return bodies.replace(accelerations=bodies.accelerations + correction)
