"""Fail-safe GPT boot chain updates, GPT disk editing and storage health helpers."""

__version__ = "0.1.0"

__all__ = ["__version__"]