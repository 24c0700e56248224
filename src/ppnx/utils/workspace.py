"""Growable scratch buffers for the implicit corrector.

A workspace is allocated on first use and then reused for every later call made on
behalf of the same simulation. Its capacity only ever grows. The snapshot arrays are
zero-padded up to the capacity before entering the jitted kernel, so as long as the
body count stays below the capacity the kernel sees the same shapes and is not
recompiled.
"""

import jax

jax.config.update("jax_enable_x64", True)
import jax.numpy as jnp

from ppnx.utils.states import GRWorkspace


def allocate_workspace(capacity: int) -> GRWorkspace:
    """Create a zeroed workspace able to hold ``capacity`` bodies."""
    if capacity < 0:
        raise ValueError(f"capacity must be non-negative, got {capacity}")
    return GRWorkspace(
        newtonian=jnp.zeros((capacity, 3)),
        constant=jnp.zeros((capacity, 3)),
        previous=jnp.zeros((capacity, 3)),
        current=jnp.zeros((capacity, 3)),
    )


def ensure_capacity(workspace: GRWorkspace | None, n_bodies: int) -> GRWorkspace:
    """Return a workspace with room for at least ``n_bodies`` bodies.

    The input handle is returned untouched when it is already large enough. Otherwise
    a new, larger workspace replaces it and the old handle should be dropped. No
    guarantee is made about the contents of the returned buffers.

    Args:
        workspace (GRWorkspace | None):
            The workspace currently owned by the caller, or None if nothing has been
            allocated yet.
        n_bodies (int):
            The number of bodies the next call will process.

    Returns:
        GRWorkspace:
            A workspace with capacity >= n_bodies. Capacity never decreases.
    """
    if workspace is not None and workspace.capacity >= n_bodies:
        return workspace
    return allocate_workspace(n_bodies)


def reset_workspace(workspace: GRWorkspace) -> GRWorkspace:
    """Zero every buffer while keeping the capacity."""
    return allocate_workspace(workspace.capacity)


def pad_rows(array: jnp.ndarray, capacity: int) -> jnp.ndarray:
    """Zero-pad the leading axis of ``array`` up to ``capacity`` rows."""
    n = array.shape[0]
    pad = [(0, capacity - n)] + [(0, 0)] * (array.ndim - 1)
    return jnp.pad(array, pad)


def active_mask(n_real: int, capacity: int) -> jnp.ndarray:
    """Boolean mask over the padded rows that marks the bodies taking part."""
    return jnp.arange(capacity) < n_real
