# polyterm/core/__init__.py
"""Matrix kernel, numerical configuration and least-squares solver."""
from . import backend, config, errors, matrix, regression

__all__ = ["backend", "config", "errors", "matrix", "regression"]
