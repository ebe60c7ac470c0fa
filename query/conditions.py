"""
WHERE condition grammar

External shape (JSON tool arguments):

    {"status": "draft"}                          -> Equals
    {"deleted_at": null}                         -> IsNull
    {"genre": ["fantasy", "sci-fi"]}             -> InSet  (= ANY($n))
    {"word_count": {"$gte": 80000, "$lt": 1e5}}  -> Compare, Compare
    {"series_id": {"$in": [1, 2]}}               -> InSet
    {"deleted_at": {"$null": false}}             -> IsNull(negated=True)

All conditions are ANDed. Parsing validates every operator key before any
parameter list exists, so a bad operator never reaches SQL construction.
"""

from dataclasses import dataclass
from typing import Any, Union

from utils.errors import DatabaseAdminError, ErrorCode

# Operator key -> SQL comparison operator
COMPARISON_OPERATORS: dict[str, str] = {
    "$eq": "=",
    "$ne": "!=",
    "$gt": ">",
    "$gte": ">=",
    "$lt": "<",
    "$lte": "<=",
    "$like": "LIKE",
    "$ilike": "ILIKE",
}

SET_OPERATOR = "$in"
NULL_OPERATOR = "$null"

VALID_OPERATORS = frozenset(COMPARISON_OPERATORS) | {SET_OPERATOR, NULL_OPERATOR}


@dataclass(frozen=True)
class Equals:
    column: str
    value: Any


@dataclass(frozen=True)
class Compare:
    column: str
    op: str  # SQL operator from COMPARISON_OPERATORS
    value: Any


@dataclass(frozen=True)
class InSet:
    column: str
    values: tuple


@dataclass(frozen=True)
class IsNull:
    column: str
    negated: bool = False


Condition = Union[Equals, Compare, InSet, IsNull]


def _invalid_operator(column: str, key: Any) -> DatabaseAdminError:
    return DatabaseAdminError(
        ErrorCode.INVALID_OPERATOR,
        f"Unsupported operator '{key}' on column '{column}'",
        {"column": column, "operator": key, "valid_operators": sorted(VALID_OPERATORS)},
    )


def _parse_operator(column: str, key: str, value: Any) -> Condition:
    if key == NULL_OPERATOR:
        if not isinstance(value, bool):
            raise DatabaseAdminError(
                ErrorCode.VALIDATION_ERROR,
                f"'$null' on column '{column}' requires true or false",
                {"column": column, "operator": key},
            )
        return IsNull(column, negated=not value)

    if key == SET_OPERATOR:
        if not isinstance(value, (list, tuple)) or not value:
            raise DatabaseAdminError(
                ErrorCode.VALIDATION_ERROR,
                f"'$in' on column '{column}' requires a non-empty array",
                {"column": column, "operator": key},
            )
        return InSet(column, tuple(value))

    op = COMPARISON_OPERATORS[key]
    if value is None:
        if op == "=":
            return IsNull(column)
        if op == "!=":
            return IsNull(column, negated=True)
        raise DatabaseAdminError(
            ErrorCode.VALIDATION_ERROR,
            f"Operator '{key}' on column '{column}' cannot compare against null",
            {"column": column, "operator": key},
        )
    return Compare(column, op, value)


def parse_where(where: Any) -> list[Condition]:
    """
    Turn a WHERE object into a flat list of conditions.

    Raises INVALID_OPERATOR for any operator key outside the fixed set.
    """
    if where is None:
        return []
    if not isinstance(where, dict):
        raise DatabaseAdminError(
            ErrorCode.INVALID_ARGUMENT, "where must be an object of column -> condition", {"where": where}
        )

    # Operators are checked across the whole object first
    for column, criterion in where.items():
        if isinstance(criterion, dict):
            for key in criterion:
                if key not in VALID_OPERATORS:
                    raise _invalid_operator(column, key)

    conditions: list[Condition] = []
    for column, criterion in where.items():
        if criterion is None:
            conditions.append(IsNull(column))
        elif isinstance(criterion, (list, tuple)):
            if not criterion:
                raise DatabaseAdminError(
                    ErrorCode.VALIDATION_ERROR,
                    f"Empty array for column '{column}'",
                    {"column": column},
                )
            conditions.append(InSet(column, tuple(criterion)))
        elif isinstance(criterion, dict):
            if not criterion:
                raise DatabaseAdminError(
                    ErrorCode.VALIDATION_ERROR,
                    f"Empty operator object for column '{column}'",
                    {"column": column},
                )
            for key, value in criterion.items():
                conditions.append(_parse_operator(column, key, value))
        else:
            conditions.append(Equals(column, criterion))
    return conditions


def render_condition(condition: Condition, params: list) -> str:
    """
    Render one condition to SQL, appending its value to params.
    """
    if isinstance(condition, Equals):
        params.append(condition.value)
        return f"{condition.column} = ${len(params)}"
    if isinstance(condition, Compare):
        params.append(condition.value)
        return f"{condition.column} {condition.op} ${len(params)}"
    if isinstance(condition, InSet):
        params.append(list(condition.values))
        return f"{condition.column} = ANY(${len(params)})"
    if isinstance(condition, IsNull):
        return f"{condition.column} IS NOT NULL" if condition.negated else f"{condition.column} IS NULL"
    raise TypeError(f"Unhandled condition type: {type(condition).__name__}")


def condition_columns(conditions: list[Condition]) -> list[str]:
    seen: dict[str, None] = {}
    for condition in conditions:
        seen.setdefault(condition.column, None)
    return list(seen)
