"""Camera module.

Components:
    pinhole: Perspective camera producing primary rays from normalized
        image coordinates, one at a time or for a whole tile
"""

from .pinhole import Pinhole

__all__ = ["Pinhole"]
