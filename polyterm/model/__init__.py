# polyterm/model/__init__.py
"""Terms and the model that owns them."""
from .model import Model, ModelLike
from .subset import Subset, current_subset, use_subset
from .term import MaterializationStatus, StatsFailure, Term, TermPart, TermStats

__all__ = [
    "MaterializationStatus",
    "Model",
    "ModelLike",
    "StatsFailure",
    "Subset",
    "Term",
    "TermPart",
    "TermStats",
    "current_subset",
    "use_subset",
]
