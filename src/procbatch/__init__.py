"""Bounded-parallelism batch runner for a long-running processing CLI."""

__version__ = "0.3.0"
