"""Render settings.

Settings are plain dataclasses with validation and a dictionary round trip,
so a host front end can fill them from any configuration format.

Example:
    >>> from forged.scene.settings import Settings
    >>> settings = Settings(width=320, height=240, antialias=2)
    >>> settings.renderer.renderer_type
    'phong'
    >>> Settings.from_dict(settings.to_dict()) == settings
    True
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import numpy.typing as npt

RENDERER_TYPES = ("phong", "pbr", "pathtracer")

BackgroundFn = Callable[[npt.NDArray[np.float64]], npt.ArrayLike]


def _rgb(value: Any, name: str) -> tuple[float, float, float]:
    values = tuple(float(c) for c in value)
    if len(values) != 3:
        raise ValueError(f"{name} must have 3 components, got {len(values)}")
    return values  # type: ignore[return-value]


@dataclass
class RendererSettings:
    """Shading policy and its parameters.

    Attributes:
        renderer_type: One of ``phong``, ``pbr`` or ``pathtracer``.
        ambient: Ambient color of the Phong terms.
        specular: Specular color of the Phong terms.
        iterations: Number of accumulated passes.
        depth: Maximum bounces of the path tracer.
        seed: Seed of the per-tile random generators.
    """

    renderer_type: str = "phong"
    ambient: tuple[float, float, float] = (0.05, 0.1, 0.15)
    specular: tuple[float, float, float] = (1.0, 1.0, 1.0)
    iterations: int = 1
    depth: int = 1
    seed: int = 0

    def __post_init__(self) -> None:
        if self.renderer_type not in RENDERER_TYPES:
            raise ValueError(
                f"Unknown renderer type '{self.renderer_type}', expected one of {', '.join(RENDERER_TYPES)}"
            )
        self.ambient = _rgb(self.ambient, "ambient")
        self.specular = _rgb(self.specular, "specular")
        if self.iterations < 1:
            raise ValueError(f"iterations must be at least 1, got {self.iterations}")
        if self.depth < 1:
            raise ValueError(f"depth must be at least 1, got {self.depth}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.renderer_type,
            "ambient": list(self.ambient),
            "specular": list(self.specular),
            "iterations": self.iterations,
            "depth": self.depth,
            "seed": self.seed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RendererSettings:
        defaults = cls()
        return cls(
            renderer_type=data.get("type", defaults.renderer_type),
            ambient=data.get("ambient", defaults.ambient),
            specular=data.get("specular", defaults.specular),
            iterations=int(data.get("iterations", defaults.iterations)),
            depth=int(data.get("depth", defaults.depth)),
            seed=int(data.get("seed", defaults.seed)),
        )


@dataclass
class Settings:
    """Image, sampling and ray marching settings.

    Attributes:
        width: Image width in pixels.
        height: Image height in pixels.
        antialias: Side of the per-pixel sample grid (``antialias**2`` rays).
        background: Color of pixels whose rays miss everything.
        background_fn: Optional ``background_fn(uv) -> rgb`` overriding
            ``background``; ``uv`` has shape (N, 2).
        opacity: Alpha of background pixels.
        steps: Maximum ray marching steps.
        step_size: Fraction of the safe distance advanced per step.
        max_distance: Ray marching cutoff distance.
        iso_value: Distance below which a marched ray counts as a hit.
        tile_size: (width, height) of a scheduler tile.
        renderer: Shading policy settings.
    """

    width: int = 800
    height: int = 600
    antialias: int = 1
    background: tuple[float, float, float] = (0.0, 0.0, 0.0)
    background_fn: BackgroundFn | None = None
    opacity: float = 1.0
    steps: int = 256
    step_size: float = 1.0
    max_distance: float = 10.0
    iso_value: float = 0.0001
    tile_size: tuple[int, int] = (80, 80)
    renderer: RendererSettings = field(default_factory=RendererSettings)

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Image size must be positive, got {self.width}x{self.height}")
        if self.antialias < 1:
            raise ValueError(f"antialias must be at least 1, got {self.antialias}")
        self.background = _rgb(self.background, "background")
        if self.steps < 1:
            raise ValueError(f"steps must be at least 1, got {self.steps}")
        if self.step_size <= 0.0:
            raise ValueError(f"step_size must be positive, got {self.step_size}")
        if self.max_distance <= 0.0:
            raise ValueError(f"max_distance must be positive, got {self.max_distance}")
        tw, th = self.tile_size
        if tw <= 0 or th <= 0:
            raise ValueError(f"Tile size must be positive, got {tw}x{th}")
        self.tile_size = (int(tw), int(th))

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def to_dict(self) -> dict[str, Any]:
        """Export to a plain dictionary (for JSON serialization).

        ``background_fn`` is a callable and is not exported.
        """
        return {
            "width": self.width,
            "height": self.height,
            "antialias": self.antialias,
            "background": list(self.background),
            "opacity": self.opacity,
            "steps": self.steps,
            "step_size": self.step_size,
            "max_distance": self.max_distance,
            "iso_value": self.iso_value,
            "tile_size": list(self.tile_size),
            "renderer": self.renderer.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create settings from a dictionary; missing keys take their defaults.

        Raises:
            ValueError: If a value is out of range.
        """
        defaults = cls()
        return cls(
            width=int(data.get("width", defaults.width)),
            height=int(data.get("height", defaults.height)),
            antialias=int(data.get("antialias", defaults.antialias)),
            background=data.get("background", defaults.background),
            opacity=float(data.get("opacity", defaults.opacity)),
            steps=int(data.get("steps", defaults.steps)),
            step_size=float(data.get("step_size", defaults.step_size)),
            max_distance=float(data.get("max_distance", defaults.max_distance)),
            iso_value=float(data.get("iso_value", defaults.iso_value)),
            tile_size=tuple(data.get("tile_size", defaults.tile_size)),
            renderer=RendererSettings.from_dict(data.get("renderer", {})),
        )
