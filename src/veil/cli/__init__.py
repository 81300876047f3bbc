# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Command-line interface for the veil sensor."""

from .main import app, main

__all__ = ["app", "main"]
