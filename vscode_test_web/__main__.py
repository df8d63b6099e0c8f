"""Entrypoint for ``python -m vscode_test_web``."""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    main()
