"""Arbitrary-precision implicit post-Newtonian correction using mpmath.

This is a reference implementation for testing the accuracy of the jitted float64
version in gr_implicit.py. All computations use mpmath arbitrary-precision arithmetic
(controlled by mp.dps). Not suitable for production use: this is pure Python with
explicit loops, including the literal O(N^3) triple sum for the potential terms.

The physics are identical to implicit_correction in gr_implicit.py, but the
fixed-point iteration runs until the estimate stops changing at the working
precision rather than at float64 precision.
"""

import numpy as np
from mpmath import matrix, mp, mpf, sqrt

from ppnx.data.constants import GRAVITATIONAL_CONSTANT, SPEED_OF_LIGHT
from ppnx.utils.states import BodySnapshot

mp.dps = 50


def _to_mpmat(arr: np.ndarray) -> matrix:
    """Copy an (N,) or (N, 3) float array into an (N, 1) or (N, 3) mpmath matrix."""
    arr = np.asarray(arr, dtype=np.float64)
    if arr.ndim not in (1, 2):
        raise ValueError(f"expected a 1D or 2D array, got ndim={arr.ndim}")
    rows = arr.reshape(len(arr), -1)
    return matrix([[mpf(float(value)) for value in row] for row in rows])


def _mpmat_to_np(m: matrix) -> np.ndarray:
    """Convert an (N, 3) mpmath matrix to a numpy float64 array."""
    return np.array([[float(m[i, j]) for j in range(m.cols)] for i in range(m.rows)])


def _dot3(a, b) -> mpf:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def _row(m: matrix, i: int) -> list:
    return [m[i, 0], m[i, 1], m[i, 2]]


def implicit_correction_mpmath(
    positions: matrix,
    velocities: matrix,
    masses: matrix,
    newtonian: matrix,
    G: mpf | float = GRAVITATIONAL_CONSTANT,
    c: mpf | float = SPEED_OF_LIGHT,
    max_iterations: int = 50,
) -> matrix:
    """Compute the implicit post-Newtonian correction in arbitrary precision.

    Args:
        positions: (N, 3) mpmath matrix of positions.
        velocities: (N, 3) mpmath matrix of velocities.
        masses: (N, 1) mpmath matrix of masses.
        newtonian: (N, 3) mpmath matrix of Newtonian accelerations used to seed the
            iteration.
        G: Gravitational constant.
        c: Speed of light.
        max_iterations: Maximum number of fixed-point rounds.

    Returns:
        (N, 3) mpmath matrix of corrections (the Newtonian part is not included).
    """
    G = mpf(G)
    c2 = mpf(c) ** 2
    N = positions.rows

    x = [_row(positions, i) for i in range(N)]
    v = [_row(velocities, i) for i in range(N)]
    gms = [G * masses[i] for i in range(N)]

    def sep(i, j):
        return [x[i][k] - x[j][k] for k in range(3)]

    # ---- Constant terms ----
    a_const = [[mpf(0)] * 3 for _ in range(N)]
    for i in range(N):
        for j in range(N):
            if i == j:
                continue
            a1 = mpf(0)
            a2 = mpf(0)
            for k in range(N):
                if k != i:
                    a1 += 4 * gms[k] / sqrt(_dot3(sep(i, k), sep(i, k))) / c2
                if k != j:
                    a2 += gms[k] / sqrt(_dot3(sep(k, j), sep(k, j))) / c2

            dx = sep(i, j)
            r2 = _dot3(dx, dx)
            r3 = r2 * sqrt(r2)

            a3 = -_dot3(v[i], v[i]) / c2
            a4 = -2 * _dot3(v[j], v[j]) / c2
            a5 = 4 * _dot3(v[i], v[j]) / c2
            a6 = mpf(3) / (2 * c2) * _dot3(dx, v[j]) ** 2 / r2
            factor1 = a1 + a2 + a3 + a4 + a5 + a6

            factor2 = _dot3(dx, [4 * v[i][k] - 3 * v[j][k] for k in range(3)])
            for k in range(3):
                a_const[i][k] += gms[j] * dx[k] * factor1 / r3
                a_const[i][k] += gms[j] * factor2 * (v[i][k] - v[j][k]) / (r3 * c2)

    # ---- Iterative terms ----
    a_iter = [[mpf(0)] * 3 for _ in range(N)]
    for _iteration in range(max_iterations):
        estimate = [
            [newtonian[i, k] + a_const[i][k] + a_iter[i][k] for k in range(3)]
            for i in range(N)
        ]
        a_next = [[mpf(0)] * 3 for _ in range(N)]
        for i in range(N):
            for j in range(i + 1, N):
                dx = sep(i, j)
                r2 = _dot3(dx, dx)
                r = sqrt(r2)
                prefac1 = 1 / (2 * c2 * r2 * r)
                prefac2 = mpf(7) / (2 * c2 * r)
                daj = _dot3(dx, estimate[j])
                dai = _dot3(dx, estimate[i])
                for k in range(3):
                    a_next[i][k] += gms[j] * (
                        prefac1 * daj * dx[k] + prefac2 * estimate[j][k]
                    )
                    a_next[j][k] += gms[i] * (
                        prefac1 * dai * dx[k] + prefac2 * estimate[i][k]
                    )

        max_ratio = mpf(0)
        for i in range(N):
            total = [newtonian[i, k] + a_const[i][k] + a_next[i][k] for k in range(3)]
            change = [a_next[i][k] - a_iter[i][k] for k in range(3)]
            if _dot3(total, total) != 0:
                ratio = sqrt(_dot3(change, change) / _dot3(total, total))
                max_ratio = max(max_ratio, ratio)
        a_iter = a_next

        if max_ratio < mpf(10) ** (-(mp.dps - 5)):
            break

    result = matrix(N, 3)
    for i in range(N):
        for k in range(3):
            result[i, k] = a_const[i][k] + a_iter[i][k]
    return result


def implicit_correction_mpmath_from_snapshot(
    bodies: BodySnapshot,
    G: float = GRAVITATIONAL_CONSTANT,
    c: float = SPEED_OF_LIGHT,
    newtonian_overrides=None,
    max_iterations: int = 50,
    dps: int | None = None,
) -> np.ndarray:
    """Compute the implicit correction from a BodySnapshot, returning a numpy array.

    Convenience wrapper for direct comparison against implicit_correction.

    Args:
        bodies: The current state, accelerations holding the Newtonian values.
        G: Gravitational constant.
        c: Speed of light.
        newtonian_overrides: (index, acceleration) pairs replacing Newtonian values.
        max_iterations: Maximum number of fixed-point rounds.
        dps: Decimal places of precision. If None, uses current mp.dps.

    Returns:
        np.ndarray: (N, 3) float64 array of corrections.
    """
    old_dps = mp.dps
    if dps is not None:
        mp.dps = dps

    try:
        newtonian = np.array(bodies.accelerations, dtype=np.float64)
        for index, value in newtonian_overrides or ():
            newtonian[index] = np.asarray(value)

        result_mp = implicit_correction_mpmath(
            _to_mpmat(bodies.positions),
            _to_mpmat(bodies.velocities),
            _to_mpmat(bodies.masses),
            _to_mpmat(newtonian),
            G=mpf(float(G)),
            c=mpf(float(c)),
            max_iterations=max_iterations,
        )
        return _mpmat_to_np(result_mp)

    finally:
        if dps is not None:
            mp.dps = old_dps
