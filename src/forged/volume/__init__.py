"""Volume module: the voxelized signed distance cache.

Components:
    modelbuffer: Dense voxel grid populated from a distance source, with
        scalar and batched (Taichi) ray marching

Taichi must be initialized (``ti.init``) before a ModelBuffer is created.
"""

from .modelbuffer import BatchHits, DistanceSource, Hit, ModelBuffer, Voxel

__all__ = ["BatchHits", "DistanceSource", "Hit", "ModelBuffer", "Voxel"]
