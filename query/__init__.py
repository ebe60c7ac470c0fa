"""
Parameterized SQL construction for whitelisted tables.
"""

from .builder import QueryBuilder, CONFLICT_MODES
from .conditions import (
    Condition, Equals, Compare, InSet, IsNull,
    VALID_OPERATORS, parse_where, render_condition,
)

__all__ = [
    'QueryBuilder',
    'CONFLICT_MODES',
    'Condition',
    'Equals',
    'Compare',
    'InSet',
    'IsNull',
    'VALID_OPERATORS',
    'parse_where',
    'render_condition',
]
