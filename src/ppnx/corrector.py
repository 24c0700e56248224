import jax

jax.config.update("jax_enable_x64", True)
import warnings

import jax.numpy as jnp

from ppnx.accelerations import (
    GR_MODELS,
    explicit_correction,
    first_pair_overrides,
    implicit_correction,
    potential_correction,
)
from ppnx.data.constants import (
    CONVERGENCE_TOLERANCE,
    DEFAULT_MAX_ITERATIONS,
    GRAVITATIONAL_CONSTANT,
    SPEED_OF_LIGHT,
)
from ppnx.utils.checks import validate_snapshot
from ppnx.utils.states import BodySnapshot
from ppnx.utils.workspace import ensure_capacity, reset_workspace


class GRCorrector:
    """Post-Newtonian corrections on behalf of one host simulation.

    Holds the physical constants and the scratch workspace of the implicit model for
    the lifetime of the simulation. The workspace is allocated on the first implicit
    call and only grows afterwards.
    """

    def __init__(
        self,
        G=GRAVITATIONAL_CONSTANT,
        c=SPEED_OF_LIGHT,
        max_iterations=DEFAULT_MAX_ITERATIONS,
        tolerance=CONVERGENCE_TOLERANCE,
        warn_on_nonconvergence=False,
        check_separations=False,
    ):
        if not c > 0:
            raise ValueError(f"speed of light must be positive, got {c}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")

        self.G = G
        self.c = c
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.warn_on_nonconvergence = warn_on_nonconvergence
        self.check_separations = check_separations

        self._workspace = None
        self._last_convergence = None

    def __repr__(self):
        return f"GRCorrector(G={self.G}, c={self.c}, capacity={self.capacity})"

    @property
    def workspace(self):
        return self._workspace

    @property
    def capacity(self):
        return 0 if self._workspace is None else self._workspace.capacity

    @property
    def last_convergence(self):
        return self._last_convergence

    ################
    # PUBLIC METHODS
    ################

    def explicit(self, bodies: BodySnapshot, n_variational: int = 0) -> jnp.ndarray:
        self._validate(bodies, n_variational, require_dominant_mass=True)
        return explicit_correction(bodies, self.G, self.c, n_variational=n_variational)

    def potential(self, bodies: BodySnapshot, n_variational: int = 0) -> jnp.ndarray:
        self._validate(bodies, n_variational, require_dominant_mass=True)
        return potential_correction(bodies, self.G, self.c, n_variational=n_variational)

    def implicit(
        self,
        bodies: BodySnapshot,
        ignore_first_pair: bool = False,
        newtonian_overrides=None,
        n_variational: int = 0,
    ) -> jnp.ndarray:
        """Implicit multi-body correction, reusing this corrector's workspace.

        Args:
            bodies (BodySnapshot):
                The current state, accelerations holding the Newtonian values.
            ignore_first_pair (bool):
                Whether the host's Newtonian accelerations lack the 0-1 interaction.
            newtonian_overrides (Sequence[tuple[int, array]] | None):
                Additional (index, acceleration) replacements of Newtonian values.
            n_variational (int):
                Number of trailing variational particles.

        Returns:
            jnp.ndarray: (N,3) corrections to add to the accelerations.
        """
        self._validate(bodies, n_variational)

        overrides = list(newtonian_overrides or [])
        if ignore_first_pair and bodies.n_bodies - n_variational >= 2:
            overrides = first_pair_overrides(bodies, self.G) + overrides

        self._workspace = ensure_capacity(self._workspace, bodies.n_bodies)
        correction, self._workspace, info = implicit_correction(
            bodies,
            self.G,
            self.c,
            newtonian_overrides=overrides,
            workspace=self._workspace,
            n_variational=n_variational,
            max_iterations=self.max_iterations,
            tolerance=self.tolerance,
        )
        self._last_convergence = info

        if self.warn_on_nonconvergence and not bool(info.converged):
            warnings.warn(
                f"implicit GR correction did not converge in {self.max_iterations}"
                " rounds, using the last estimate",
                RuntimeWarning,
                stacklevel=2,
            )
        return correction

    def apply(
        self, bodies: BodySnapshot, model: str = "implicit", **kwargs
    ) -> BodySnapshot:
        """Return a copy of ``bodies`` with the chosen correction added to its accelerations."""
        if model == "explicit":
            da = self.explicit(bodies, **kwargs)
        elif model == "potential":
            da = self.potential(bodies, **kwargs)
        elif model == "implicit":
            da = self.implicit(bodies, **kwargs)
        else:
            raise ValueError(f"model must be one of {GR_MODELS}, got '{model}'")
        return bodies.replace(accelerations=bodies.accelerations + da)

    def reset(self):
        """Zero the workspace buffers, keeping their capacity."""
        if self._workspace is not None:
            self._workspace = reset_workspace(self._workspace)
        self._last_convergence = None

    ################
    # HELPERS
    ################

    def _validate(self, bodies, n_variational, require_dominant_mass=False):
        validate_snapshot(
            bodies,
            n_variational=n_variational,
            require_dominant_mass=require_dominant_mass,
            check_separations=self.check_separations,
        )
