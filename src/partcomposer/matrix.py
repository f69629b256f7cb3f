from __future__ import annotations

import logging
from typing import Sequence, Tuple

from .types import DegenerateTransformError, Matrix3

DET_EPS = 1e-6

log = logging.getLogger(__name__)


def _as_matrix(values: Sequence[float]) -> Matrix3:
    if len(values) != 9:
        raise ValueError(f"3x3 matrix needs 9 values, got {len(values)}")
    m = tuple(float(v) for v in values)
    return m  # type: ignore[return-value]


def identity() -> Matrix3:
    return (1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0)


def multiply(A: Sequence[float], B: Sequence[float]) -> Matrix3:
    a = _as_matrix(A)
    b = _as_matrix(B)
    c = [0.0] * 9
    for i in range(3):
        for j in range(3):
            acc = 0.0
            for k in range(3):
                acc += a[i * 3 + k] * b[k * 3 + j]
            c[i * 3 + j] = acc
    return _as_matrix(c)


def determinant(M: Sequence[float]) -> float:
    m = _as_matrix(M)
    return (
        m[0] * (m[4] * m[8] - m[7] * m[5])
        - m[1] * (m[3] * m[8] - m[5] * m[6])
        + m[2] * (m[3] * m[7] - m[4] * m[6])
    )


def invert(M: Sequence[float]) -> Matrix3:
    """Inverse via adjugate / determinant.

    Raises :class:`DegenerateTransformError` when ``|det| < 1e-6``.
    """
    m = _as_matrix(M)
    det = determinant(m)
    if abs(det) < DET_EPS:
        log.debug("invert: singular matrix (det=%.3e)", det)
        raise DegenerateTransformError(f"Matrix is singular (det={det:.3e})")
    inv_det = 1.0 / det
    return _as_matrix(
        [
            (m[4] * m[8] - m[5] * m[7]) * inv_det,
            (m[2] * m[7] - m[1] * m[8]) * inv_det,
            (m[1] * m[5] - m[2] * m[4]) * inv_det,
            (m[5] * m[6] - m[3] * m[8]) * inv_det,
            (m[0] * m[8] - m[2] * m[6]) * inv_det,
            (m[2] * m[3] - m[0] * m[5]) * inv_det,
            (m[3] * m[7] - m[4] * m[6]) * inv_det,
            (m[1] * m[6] - m[0] * m[7]) * inv_det,
            (m[0] * m[4] - m[1] * m[3]) * inv_det,
        ]
    )


def apply(M: Sequence[float], x: float, y: float) -> Tuple[float, float]:
    """Map ``(x, y)`` through ``M`` in homogeneous coordinates."""
    m = _as_matrix(M)
    w = m[6] * x + m[7] * y + m[8]
    if w == 0.0:
        raise DegenerateTransformError(f"Point ({x}, {y}) maps to infinity")
    return (m[0] * x + m[1] * y + m[2]) / w, (m[3] * x + m[4] * y + m[5]) / w
