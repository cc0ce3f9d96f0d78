"""Orchestration layer for jobs run on a remote image-workflow provider."""

__version__ = "0.1.0"
