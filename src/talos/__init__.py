"""Talos - run natural-language automation tasks through AI coding-agent CLIs."""

__version__ = "0.1.0"
