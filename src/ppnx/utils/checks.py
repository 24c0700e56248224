import numpy as np

from ppnx.utils.states import BodySnapshot


def check_n_variational(n_bodies: int, n_variational: int) -> None:
    """Raise a ValueError unless 0 <= n_variational <= n_bodies.

    Only the static body count is inspected, so this is safe to call while tracing.
    """
    if not 0 <= n_variational <= n_bodies:
        raise ValueError(
            f"n_variational must be between 0 and {n_bodies}, got {n_variational}"
        )


def validate_snapshot(
    bodies: BodySnapshot,
    n_variational: int = 0,
    require_dominant_mass: bool = False,
    check_separations: bool = False,
) -> None:
    """Check that a snapshot satisfies the preconditions of the correctors.

    Runs on the host, outside of any jitted code, and raises instead of returning
    a flag.

    Args:
        bodies (BodySnapshot):
            The snapshot to check.
        n_variational (int):
            Number of trailing variational particles, which are not corrected.
        require_dominant_mass (bool):
            If True, body 0 must have a strictly positive mass. The explicit and
            potential models divide by it.
        check_separations (bool):
            If True, raise when two real bodies sit at the same position. This is
            an O(N^2) check.

    Raises:
        ValueError: If any of the checks fail.
    """
    positions = np.asarray(bodies.positions)
    velocities = np.asarray(bodies.velocities)
    masses = np.asarray(bodies.masses)
    accelerations = np.asarray(bodies.accelerations)

    if positions.ndim != 2 or positions.shape[1] != 3:
        raise ValueError(f"positions must have shape (N, 3), got {positions.shape}")
    n = positions.shape[0]
    if velocities.shape != (n, 3):
        raise ValueError(
            f"velocities must have shape ({n}, 3), got {velocities.shape}"
        )
    if accelerations.shape != (n, 3):
        raise ValueError(
            f"accelerations must have shape ({n}, 3), got {accelerations.shape}"
        )
    if masses.shape != (n,):
        raise ValueError(f"masses must have shape ({n},), got {masses.shape}")
    check_n_variational(n, n_variational)

    n_real = n - n_variational
    if np.any(masses[:n_real] < 0):
        raise ValueError("masses must be non-negative")
    if require_dominant_mass and n_real > 0 and not masses[0] > 0:
        raise ValueError("the dominant body (index 0) must have a positive mass")

    if check_separations and n_real > 1:
        x = positions[:n_real]
        r2 = np.sum((x[:, None, :] - x[None, :, :]) ** 2, axis=-1)
        np.fill_diagonal(r2, np.inf)
        if np.any(r2 == 0.0):
            i, j = np.argwhere(r2 == 0.0)[0]
            raise ValueError(f"bodies {i} and {j} are at the same position")
