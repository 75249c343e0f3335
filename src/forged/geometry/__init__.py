"""Geometry module for distance fields and analytic primitives.

Components:
    sdf: Primitive signed distance functions, boolean combinators and the
        composable SDF shape used by the scene and the model buffer
    analytical: Closed-form sphere and plane intersection

SDF evaluation is vectorized with NumPy: every distance function takes
points of shape (..., 3).
"""

from .analytical import AnalyticHit, Analytical, AnalyticalType, hit_plane, hit_sphere
from .sdf import (
    SDF,
    SdfType,
    SMin,
    Subtract,
    op_smin,
    op_subtract,
    sd_box,
    sd_capped_cone,
    sd_plane,
    sd_sphere,
)

__all__ = [
    "SDF",
    "SdfType",
    "SMin",
    "Subtract",
    "op_smin",
    "op_subtract",
    "sd_box",
    "sd_capped_cone",
    "sd_plane",
    "sd_sphere",
    "AnalyticHit",
    "Analytical",
    "AnalyticalType",
    "hit_plane",
    "hit_sphere",
]
