# ABOUTME: Exposes the selection optimizer that ranks and filters scored candidates.
# ABOUTME: Enforces the comfort-zone bound and category diversity.

from .optimizer import SelectionConstraints, rank, select

__all__ = ["SelectionConstraints", "rank", "select"]
