"""Hypnosis script generator: outline-then-sections streaming generation with section regeneration."""

__version__ = "0.1.0"
