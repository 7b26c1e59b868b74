"""Numerical and validation helpers."""

from .numerics import box_muller_normals, percentile_rank, sample_standard_deviation

__all__ = ["box_muller_normals", "percentile_rank", "sample_standard_deviation"]
