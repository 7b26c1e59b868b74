"""Numerical helpers shared by the pricing and analytics modules."""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np
from numpy.random import Generator
from scipy.stats import percentileofscore

TWO_PI = 2.0 * math.pi


def box_muller_normals(generator: Generator, size: int) -> np.ndarray:
    """Draw ``size`` standard normals with the Box-Muller transform.

    Uniforms come from ``generator``; each pair of uniforms yields two normals
    (cosine and sine branches) so no draw is wasted.
    """

    count = int(size)
    if count <= 0:
        return np.empty(0, dtype=float)
    pairs = (count + 1) // 2
    # 1 - U lies in (0, 1], keeping the logarithm finite
    u1 = 1.0 - generator.random(pairs)
    u2 = generator.random(pairs)
    radius = np.sqrt(-2.0 * np.log(u1))
    angle = TWO_PI * u2
    normals = np.concatenate((radius * np.cos(angle), radius * np.sin(angle)))
    return normals[:count]


def percentile_rank(value: float, history: Sequence[float]) -> Optional[float]:
    """Share of ``history`` at or below ``value``, in percent.

    Equivalent to ``count(v <= value) / len(history) * 100``; ``None`` for an
    empty history.
    """

    sample = [float(item) for item in history]
    if not sample:
        return None
    rank = float(percentileofscore(sample, float(value), kind="weak"))
    return min(100.0, max(0.0, rank))


def sample_standard_deviation(history: Sequence[float]) -> Optional[float]:
    """Bessel-corrected standard deviation; ``None`` with fewer than two points."""

    sample = np.asarray(list(history), dtype=float)
    if sample.size < 2:
        return None
    return float(np.std(sample, ddof=1))
