"""
CLI Module - Command-line interface for Campusfy.
=================================================

Provides CLI commands for:
- Loading and refreshing a university's course cache
- Searching courses (keywords, topics, filters, experience)
- Looking up a single course
- Inspecting and clearing the local cache

Usage:
    campusfy --help
    campusfy load -t wisco
    campusfy search "comp sci 3" -t wisco
    campusfy search --topic "machine learning" --experience Easy -t wisco
    campusfy status -t wisco

Components:
- main: Typer CLI application
"""

from campusfy.cli.main import app, cli

__all__ = ["app", "cli"]
