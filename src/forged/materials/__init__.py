"""Material definitions."""

from forged.materials.material import AlphaMode, Material, Medium, MediumType

__all__ = ["AlphaMode", "Material", "Medium", "MediumType"]
