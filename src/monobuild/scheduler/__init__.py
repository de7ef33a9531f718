"""Dependency-ordered scheduling of workspace units.

Modules:
    - types: Visit result and visitor signatures
    - sequential: One visitor at a time, dependencies first
    - parallel: All units at once, gated on dependency futures
"""

from __future__ import annotations

from monobuild.scheduler.parallel import visit_in_order_parallel, visit_in_parallel
from monobuild.scheduler.sequential import (
    visit_dependents,
    visit_in_order,
    visit_in_reverse_order,
)
from monobuild.scheduler.types import ParallelVisitor, SequentialVisitor, UnorderedVisitor, Visit

__all__ = [
    "ParallelVisitor",
    "SequentialVisitor",
    "UnorderedVisitor",
    "Visit",
    "visit_dependents",
    "visit_in_order",
    "visit_in_order_parallel",
    "visit_in_parallel",
    "visit_in_reverse_order",
]
