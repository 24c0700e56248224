import jax

jax.config.update("jax_enable_x64", True)
import chex
import jax.numpy as jnp


@chex.dataclass
class BodySnapshot:
    """Instantaneous state of the bodies handed over by the host simulation.

    The accelerations are expected to already contain the Newtonian contribution.
    Correctors never modify a snapshot, the ``apply_*`` functions return a new one.
    """

    positions: jnp.ndarray
    velocities: jnp.ndarray
    masses: jnp.ndarray
    accelerations: jnp.ndarray

    @property
    def n_bodies(self):
        return self.positions.shape[0]


@chex.dataclass
class GRWorkspace:
    """Scratch vector fields of the implicit corrector.

    All four fields have shape (capacity, 3). Rows past the number of bodies in the
    most recent call hold no meaningful values. The kernel never reads the buffers on
    entry, they only fix the padded shape it is compiled for, and are returned
    filled with the final state of the iteration.
    """

    newtonian: jnp.ndarray
    constant: jnp.ndarray
    previous: jnp.ndarray
    current: jnp.ndarray

    @property
    def capacity(self):
        return self.newtonian.shape[0]


@chex.dataclass
class ConvergenceInfo:
    rounds: int
    converged: bool
    # largest squared relative change after each round, nan for rounds never run
    ratio_history: jnp.ndarray
