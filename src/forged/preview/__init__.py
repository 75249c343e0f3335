"""Preview and export module.

Components:
    display: Tone mapping (Reinhard, exposure, film) and gamma correction
    export: PNG export of render buffers and arrays, RMSE comparison
"""

from .display import (
    ToneMapMethod,
    apply_gamma,
    process_image_for_display,
    tone_map_exposure,
    tone_map_film,
    tone_map_reinhard,
)
from .export import compute_rmse, image_to_uint8, load_png, save_png, save_png_from_array

__all__ = [
    "ToneMapMethod",
    "apply_gamma",
    "compute_rmse",
    "image_to_uint8",
    "load_png",
    "process_image_for_display",
    "save_png",
    "save_png_from_array",
    "tone_map_exposure",
    "tone_map_film",
    "tone_map_reinhard",
]
