"""
Pseudo-inverse helpers for differential inverse kinematics.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray


@dataclass(frozen=True, slots=True)
class ThinSVD:
    """J = U @ diag(s) @ Vt, with U (m,k), s (k,), Vt (k,n) and k = min(m, n)."""

    U: NDArray[np.float64]
    s: NDArray[np.float64]
    Vt: NDArray[np.float64]

    @property
    def min_singular(self) -> float:
        return float(self.s[-1]) if self.s.size else 0.0

    @property
    def condition(self) -> float:
        if not self.s.size or self.s[-1] == 0.0:
            return float("inf")
        return float(self.s[0] / self.s[-1])


def thin_svd(matrix: ArrayLike) -> ThinSVD:
    """Thin singular value decomposition of a 2D matrix."""
    J = np.asarray(matrix, dtype=np.float64)
    if J.ndim != 2:
        raise ValueError(f"Expected a 2D matrix, got shape {J.shape}")
    U, s, Vt = np.linalg.svd(J, full_matrices=False)
    return ThinSVD(U, s, Vt)


def pseudo_inverse_from_svd(svd: ThinSVD) -> NDArray[np.float64]:
    """
    V @ inv(diag(s)) @ U^T.

    No damping and no singular value cutoff: a zero singular value yields
    inf/nan entries, a tiny one yields arbitrarily large entries. numpy
    floating-point warnings are suppressed; callers check sigma_min and
    finiteness themselves and report it through logging.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        s_inv = 1.0 / svd.s
        return (svd.Vt.T * s_inv) @ svd.U.T


def pseudo_inverse(matrix: ArrayLike) -> NDArray[np.float64]:
    """Undamped SVD pseudo-inverse of matrix."""
    return pseudo_inverse_from_svd(thin_svd(matrix))
