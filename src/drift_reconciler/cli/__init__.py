"""Command-line interface."""

from drift_reconciler.cli.main import cli

__all__ = ["cli"]
