#!/usr/bin/env python3
"""
Entry point for running the sales indexer from a source checkout.

Equivalent to the installed ``salesindex`` command.
"""

from __future__ import annotations

from salesindex.cli import main

if __name__ == "__main__":
    main()
