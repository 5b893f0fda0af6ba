"""Configuration, profiles and background-process helpers for Lima container VMs."""

__version__ = "0.1.0"
__all__ = ["__version__"]