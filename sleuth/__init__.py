"""Sleuth: a read-only diagnostic assistant driven by a language model."""

__version__ = "0.1.0"
