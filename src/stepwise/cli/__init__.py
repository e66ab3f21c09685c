# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""CLI module for Stepwise.

This module provides the command-line interface using Typer.
"""

from stepwise.cli.app import app

__all__ = ["app"]
