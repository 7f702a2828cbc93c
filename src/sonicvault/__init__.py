"""SonicVault - personal music library with permanent track acquisition."""

__version__ = "0.1.0"
