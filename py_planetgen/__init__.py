"""Procedural planet terrain generation: tectonics, rivers, erosion, climate and biomes."""

__version__ = "0.1.0"
