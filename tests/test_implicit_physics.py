"""Physical and structural properties of the implicit multi-body GR correction."""

import jax

jax.config.update("jax_enable_x64", True)

import jax.numpy as jnp
import numpy as np
import pytest

from ppnx.accelerations.gr import explicit_correction
from ppnx.accelerations.gr_implicit import (
    apply_implicit_correction,
    first_pair_overrides,
    implicit_correction,
)
from ppnx.accelerations.newtonian import newtonian_gravity
from ppnx.utils.states import BodySnapshot
from ppnx.utils.workspace import allocate_workspace, reset_workspace


def _snapshot(x, v, m, G=1.0, ignore_first_pair=False) -> BodySnapshot:
    x, v, m = jnp.array(x), jnp.array(v), jnp.array(m)
    return BodySnapshot(
        positions=x,
        velocities=v,
        masses=m,
        accelerations=newtonian_gravity(x, m, G, ignore_first_pair=ignore_first_pair),
    )


def _random_snapshot(n: int, seed: int, G: float = 1.0) -> BodySnapshot:
    rng = np.random.RandomState(seed)
    return _snapshot(
        rng.normal(0, 10.0, (n, 3)),
        rng.normal(0, 1.0, (n, 3)),
        rng.uniform(0.1, 1.0, n),
        G=G,
    )


def _sun_mercury() -> BodySnapshot:
    """Sun and a Mercury-like planet on a circular orbit, G = 1, solar mass units."""
    a = 0.387
    m_planet = 1e-6
    v_circ = np.sqrt((1.0 + m_planet) / a)
    return _snapshot(
        [[0.0, 0.0, 0.0], [a, 0.0, 0.0]],
        [[0.0, 0.0, 0.0], [0.0, v_circ, 0.0]],
        [1.0, m_planet],
    )


def _eih_two_body(x, v, m, G, c) -> np.ndarray:
    """First post-Newtonian (EIH) correction for two bodies, Newtonian a_j on the right."""
    x, v, m = np.asarray(x), np.asarray(v), np.asarray(m)
    c2 = c * c
    out = np.zeros((2, 3))
    for i, j in ((0, 1), (1, 0)):
        r = np.linalg.norm(x[i] - x[j])
        n = (x[i] - x[j]) / r
        a_j = G * m[i] * n / r**2

        factor = (
            4 * G * m[j] / r
            + G * m[i] / r
            - np.dot(v[i], v[i])
            - 2 * np.dot(v[j], v[j])
            + 4 * np.dot(v[i], v[j])
            + 1.5 * np.dot(n, v[j]) ** 2
        ) / c2
        out[i] += G * m[j] * n / r**2 * factor
        out[i] += G * m[j] / (r**2 * c2) * np.dot(n, 4 * v[i] - 3 * v[j]) * (v[i] - v[j])
        out[i] += G * m[j] / (2 * c2 * r) * np.dot(n, a_j) * n
        out[i] += 3.5 * G * m[j] / (c2 * r) * a_j
    return out


def test_two_body_reduces_to_eih() -> None:
    """Test that two bodies with the 0-1 pair skipped by the host give the EIH correction."""
    G, c = 1.0, 1000.0
    x = [[0.1, -0.2, 0.05], [1.0, 0.3, -0.1]]
    v = [[0.01, -0.3, 0.02], [-0.05, 0.6, 0.1]]
    m = [1.0, 0.5]
    bodies = _snapshot(x, v, m, G=G, ignore_first_pair=True)
    # the host left the only pair out entirely
    assert jnp.all(bodies.accelerations == 0.0)

    corrected = apply_implicit_correction(bodies, G, c, ignore_first_pair=True)
    expected = _eih_two_body(x, v, m, G, c)

    np.testing.assert_allclose(
        corrected.accelerations,
        expected,
        rtol=1e-4,
        atol=1e-4 * np.max(np.abs(expected)),
    )


def test_matches_explicit_for_extreme_mass_ratio() -> None:
    """Test that a Sun + Mercury system matches the single-source correction within 1%."""
    G, c = 1.0, 1e4
    bodies = _sun_mercury()

    implicit, _, _ = implicit_correction(bodies, G, c)
    explicit = explicit_correction(bodies, G, c)

    np.testing.assert_allclose(
        implicit[1], explicit[1], rtol=1e-2, atol=1e-10 * float(jnp.max(jnp.abs(explicit)))
    )
    # the correction on the planet is radial for a circular orbit
    assert abs(float(implicit[1, 1])) < 1e-2 * abs(float(implicit[1, 0]))
    # and the sun barely feels anything in comparison
    assert jnp.linalg.norm(implicit[0]) < 1e-4 * jnp.linalg.norm(implicit[1])


def test_converges_quickly() -> None:
    """Test that a well separated, slow system converges long before the round cap."""
    bodies = _sun_mercury()
    _, _, info = implicit_correction(bodies, 1.0, 1e4)

    rounds = int(info.rounds)
    history = np.asarray(info.ratio_history)
    assert bool(info.converged)
    assert 1 <= rounds <= 3
    assert history.shape == (10,)
    assert np.all(np.diff(history[:rounds]) <= 0.0)
    assert history[rounds - 1] < 1e-30
    assert np.all(np.isnan(history[rounds:]))


def test_round_cap_is_not_an_error() -> None:
    """Test that running out of rounds still returns the best estimate."""
    bodies = _random_snapshot(4, seed=0)
    capped, _, info = implicit_correction(bodies, 1.0, 10.0, max_iterations=1)
    full, _, _ = implicit_correction(bodies, 1.0, 10.0)

    assert int(info.rounds) == 1
    assert not bool(info.converged)
    assert info.ratio_history.shape == (1,)
    assert jnp.all(jnp.isfinite(capped))
    # one round already carries most of the correction
    np.testing.assert_allclose(
        capped, full, rtol=1e-2, atol=1e-2 * float(jnp.max(jnp.abs(full)))
    )


def test_workspace_contents_do_not_matter() -> None:
    """Test that stale buffers, or zeroed ones, never change the result."""
    bodies = _random_snapshot(5, seed=1)
    G, c = 1.0, 100.0

    first, workspace, _ = implicit_correction(bodies, G, c)

    garbage = allocate_workspace(5).replace(
        newtonian=jnp.full((5, 3), 7.0),
        constant=jnp.ones((5, 3)),
        previous=jnp.full((5, 3), -3.0),
        current=jnp.full((5, 3), 1e10),
    )
    from_garbage, garbage, _ = implicit_correction(bodies, G, c, workspace=garbage)
    np.testing.assert_array_equal(first, from_garbage)
    np.testing.assert_array_equal(garbage.constant, workspace.constant)

    again, _, _ = implicit_correction(bodies, G, c, workspace=workspace)
    np.testing.assert_array_equal(first, again)

    after_reset, _, _ = implicit_correction(
        bodies, G, c, workspace=reset_workspace(workspace)
    )
    np.testing.assert_array_equal(first, after_reset)


def test_workspace_filled() -> None:
    """Test that the returned buffers hold the Newtonian capture and both terms."""
    bodies = _random_snapshot(3, seed=2)
    correction, workspace, _ = implicit_correction(bodies, 1.0, 100.0)

    np.testing.assert_array_equal(workspace.newtonian, bodies.accelerations)
    np.testing.assert_allclose(
        workspace.constant + workspace.current, correction, rtol=1e-15
    )


def test_larger_workspace_is_reused() -> None:
    """Test that a workspace with spare capacity gives the same answer and is kept."""
    bodies = _random_snapshot(3, seed=3)
    fresh, fresh_ws, _ = implicit_correction(bodies, 1.0, 100.0)
    padded, padded_ws, _ = implicit_correction(
        bodies, 1.0, 100.0, workspace=allocate_workspace(8)
    )

    assert fresh_ws.capacity == 3
    assert padded_ws.capacity == 8
    assert padded.shape == (3, 3)
    np.testing.assert_allclose(
        padded, fresh, rtol=1e-12, atol=1e-12 * float(jnp.max(jnp.abs(fresh)))
    )

    _, grown, _ = implicit_correction(
        _random_snapshot(5, seed=3), 1.0, 100.0, workspace=fresh_ws
    )
    assert grown.capacity == 5


@pytest.mark.parametrize("c", [100.0, 1000.0])
def test_newtonian_limit(c) -> None:
    """Test that the correction scales as 1/c^2 and vanishes as c grows."""
    bodies = _random_snapshot(4, seed=4)
    da_1, _, _ = implicit_correction(bodies, 1.0, c)
    da_10, _, _ = implicit_correction(bodies, 1.0, 10.0 * c)

    ratio = jnp.linalg.norm(da_1) / jnp.linalg.norm(da_10)
    assert abs(float(ratio) - 100.0) < 0.5

    da_inf, _, _ = implicit_correction(bodies, 1.0, 1e15)
    assert jnp.max(jnp.abs(da_inf)) < 1e-20 * jnp.max(jnp.abs(bodies.accelerations))


def test_symmetric_binary_conserves_momentum() -> None:
    """Test that sum(m * da) vanishes for an equal-mass binary."""
    bodies = _snapshot(
        [[-1.0, 0.0, 0.0], [1.0, 0.0, 0.0]],
        [[0.0, -0.35, 0.05], [0.0, 0.35, -0.05]],
        [1.0, 1.0],
    )
    da, _, _ = implicit_correction(bodies, 1.0, 20.0)
    weighted = np.asarray(bodies.masses)[:, None] * np.asarray(da)

    np.testing.assert_allclose(
        np.sum(weighted, axis=0), 0.0, atol=1e-12 * np.max(np.abs(weighted))
    )


def test_symmetric_triple_conserves_momentum() -> None:
    """Test a point-symmetric hierarchical triple: the central body feels no net correction."""
    bodies = _snapshot(
        [[0.0, 0.0, 0.0], [2.0, 0.0, 0.0], [-2.0, 0.0, 0.0]],
        [[0.0, 0.0, 0.0], [0.0, 0.7, 0.1], [0.0, -0.7, -0.1]],
        [1.0, 0.1, 0.1],
    )
    da, _, _ = implicit_correction(bodies, 1.0, 20.0)
    da = np.asarray(da)
    weighted = np.asarray(bodies.masses)[:, None] * da

    scale = np.max(np.abs(weighted))
    np.testing.assert_allclose(np.sum(weighted, axis=0), 0.0, atol=1e-12 * scale)
    np.testing.assert_allclose(da[0], 0.0, atol=1e-12 * np.max(np.abs(da)))
    np.testing.assert_allclose(da[1], -da[2], atol=1e-12 * np.max(np.abs(da)))


def test_first_pair_overrides_restore_the_full_field() -> None:
    """Test that skipping the 0-1 pair and restoring it with overrides changes nothing."""
    rng = np.random.RandomState(5)
    x = rng.normal(0, 10.0, (4, 3))
    v = rng.normal(0, 1.0, (4, 3))
    m = rng.uniform(0.1, 1.0, 4)

    full = _snapshot(x, v, m)
    skipped = _snapshot(x, v, m, ignore_first_pair=True)

    overrides = first_pair_overrides(skipped, 1.0)
    assert [index for index, _ in overrides] == [0, 1]
    for index, value in overrides:
        np.testing.assert_allclose(
            value, full.accelerations[index], rtol=1e-12, atol=1e-14
        )

    da_full, _, _ = implicit_correction(full, 1.0, 100.0)
    corrected = apply_implicit_correction(skipped, 1.0, 100.0, ignore_first_pair=True)
    np.testing.assert_allclose(
        corrected.accelerations - skipped.accelerations,
        da_full,
        rtol=1e-10,
        atol=1e-12 * float(jnp.max(jnp.abs(skipped.accelerations))),
    )


def test_override_replaces_newtonian_value() -> None:
    bodies = _random_snapshot(3, seed=6)
    plain, _, _ = implicit_correction(bodies, 1.0, 100.0)
    same, ws, _ = implicit_correction(
        bodies, 1.0, 100.0, newtonian_overrides=[(2, bodies.accelerations[2])]
    )
    np.testing.assert_array_equal(plain, same)

    new_value = jnp.array([1.0, 2.0, 3.0])
    _, ws, _ = implicit_correction(
        bodies, 1.0, 100.0, newtonian_overrides=[(1, new_value)]
    )
    np.testing.assert_array_equal(ws.newtonian[1], new_value)


def test_override_index_out_of_range() -> None:
    bodies = _random_snapshot(3, seed=7)
    with pytest.raises(ValueError):
        implicit_correction(bodies, 1.0, 100.0, newtonian_overrides=[(3, jnp.ones(3))])


@pytest.mark.parametrize("n_variational", [-1, 3, 5])
def test_n_variational_out_of_range(n_variational) -> None:
    bodies = _random_snapshot(2, seed=11)
    with pytest.raises(ValueError, match="n_variational"):
        implicit_correction(bodies, 1.0, 100.0, n_variational=n_variational)
    with pytest.raises(ValueError, match="n_variational"):
        apply_implicit_correction(bodies, 1.0, 100.0, n_variational=n_variational)


def test_first_pair_overrides_needs_two_bodies() -> None:
    bodies = _random_snapshot(1, seed=8)
    with pytest.raises(ValueError):
        first_pair_overrides(bodies, 1.0)


def test_variational_particles_untouched() -> None:
    """Test that trailing variational particles neither receive nor cause corrections."""
    bodies = _random_snapshot(6, seed=9)
    da, workspace, _ = implicit_correction(bodies, 1.0, 100.0, n_variational=2)
    assert workspace.capacity == 6
    assert jnp.all(da[4:] == 0.0)

    real = BodySnapshot(
        positions=bodies.positions[:4],
        velocities=bodies.velocities[:4],
        masses=bodies.masses[:4],
        accelerations=bodies.accelerations[:4],
    )
    expected, _, _ = implicit_correction(real, 1.0, 100.0)
    np.testing.assert_allclose(
        da[:4], expected, rtol=1e-12, atol=1e-12 * float(jnp.max(jnp.abs(expected)))
    )


def test_apply_does_not_double_count_newtonian() -> None:
    bodies = _random_snapshot(4, seed=10)
    da, _, _ = implicit_correction(bodies, 1.0, 100.0)
    corrected = apply_implicit_correction(bodies, 1.0, 100.0)
    np.testing.assert_allclose(
        corrected.accelerations - bodies.accelerations,
        da,
        rtol=1e-10,
        atol=1e-12 * float(jnp.max(jnp.abs(bodies.accelerations))),
    )


def test_single_body() -> None:
    bodies = _snapshot([[1.0, 2.0, 3.0]], [[0.1, 0.0, 0.0]], [1.0])
    da, _, info = implicit_correction(bodies, 1.0, 10.0)
    assert jnp.all(da == 0.0)
    assert bool(info.converged)
    assert int(info.rounds) == 1
