"""
Declarative integrity constraints.

A ``Relationship`` is one entry of the foreign-key registry: it says which column
points at which table, and what happens to the referencing rows when the referenced
row is deleted or has its key changed. A ``UniqueConstraint`` names a set of columns
whose combined values may not repeat within a table.

The remaining helpers read constraint information off the ``sqliteparser`` column
nodes built by ``registrar.columns``.
"""
import enum
import operator
from typing import Any, Dict, List, Optional, Tuple

from attr import attrs
from sqliteparser import ast

from .exceptions import SchemaError


class Action(enum.Enum):
    CASCADE = "CASCADE"
    RESTRICT = "RESTRICT"
    SET_NULL = "SET NULL"

    def __str__(self):
        return self.value


@attrs(auto_attribs=True, frozen=True)
class Relationship:
    table: str
    column: str
    foreign_table: str
    on_delete: Action
    on_update: Action
    nullable: bool = False
    foreign_column: str = "id"

    @property
    def name(self) -> str:
        return (
            f"{self.table}.{self.column} -> {self.foreign_table}.{self.foreign_column}"
        )

    def __str__(self):
        return (
            f"{self.name} ON DELETE {self.on_delete} ON UPDATE {self.on_update}"
        )


@attrs(auto_attribs=True, frozen=True)
class UniqueConstraint:
    table: str
    columns: Tuple[str, ...]

    @property
    def name(self) -> str:
        if len(self.columns) == 1:
            return f"{self.table}.{self.columns[0]}"
        else:
            return f"{self.table}({', '.join(self.columns)})"

    def __str__(self):
        return f"UNIQUE {self.name}"


def is_not_null(column: ast.Column) -> bool:
    return _has_constraint(column, ast.NotNullConstraint)


def is_primary_key(column: ast.Column) -> bool:
    return _has_constraint(column, ast.PrimaryKeyConstraint)


def is_unique(column: ast.Column) -> bool:
    return _has_constraint(column, ast.UniqueConstraint)


def is_autoincrement(column: ast.Column) -> bool:
    return any(
        isinstance(constraint, ast.PrimaryKeyConstraint) and constraint.autoincrement
        for constraint in column.definition.constraints
    )


def get_foreign_table(column: ast.Column) -> Optional[str]:
    for constraint in column.definition.constraints:
        if isinstance(constraint, ast.ForeignKeyConstraint):
            return constraint.foreign_table

    return None


def get_check_expressions(column: ast.Column) -> List[Any]:
    return [
        constraint.expr
        for constraint in column.definition.constraints
        if isinstance(constraint, ast.CheckConstraint)
    ]


def get_default(column: ast.Column) -> Any:
    default = column.definition.default
    if default is None or isinstance(default, ast.Null):
        return None
    elif isinstance(default, (ast.Integer, ast.String)):
        return default.value
    else:
        raise SchemaError(
            f"unsupported default value for column {column.name!r}: {default!r}"
        )


def _has_constraint(column: ast.Column, constraint_type: type) -> bool:
    return any(
        isinstance(constraint, constraint_type)
        for constraint in column.definition.constraints
    )


_COMPARISONS = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def check_passes(expr: Any, row: Dict[str, Any]) -> bool:
    """
    Evaluate a ``CHECK`` expression against a row.

    As in SQL, the check only fails if the expression is definitely false; a result
    of ``NULL`` (e.g. comparing a null column to a constant) passes.
    """
    return evaluate(expr, row) is not False


def evaluate(expr: Any, row: Dict[str, Any]) -> Any:
    """
    Evaluate the subset of SQL expressions produced by ``registrar.columns`` using
    SQL's three-valued logic, with ``None`` standing for ``NULL``.
    """
    if isinstance(expr, ast.Identifier):
        return row.get(expr.value)
    elif isinstance(expr, (ast.Integer, ast.String)):
        return expr.value
    elif isinstance(expr, ast.Null):
        return None
    elif isinstance(expr, ast.ExpressionList):
        return [evaluate(value, row) for value in expr.values]
    elif isinstance(expr, ast.Infix):
        return _evaluate_infix(expr, row)
    else:
        raise SchemaError(f"unsupported expression in CHECK constraint: {expr!r}")


def _evaluate_infix(expr: ast.Infix, row: Dict[str, Any]) -> Any:
    op = expr.operator.upper()
    left = evaluate(expr.left, row)
    right = evaluate(expr.right, row)

    if op == "AND":
        if left is False or right is False:
            return False
        elif left is None or right is None:
            return None
        else:
            return bool(left) and bool(right)
    elif op == "OR":
        if left is True or right is True:
            return True
        elif left is None or right is None:
            return None
        else:
            return bool(left) or bool(right)
    elif op == "IS":
        return left == right
    elif op == "IS NOT":
        return left != right

    if left is None:
        return None

    if op == "IN":
        if left in right:
            return True
        # `x IN (..., NULL)` is NULL rather than false when there is no match.
        return None if None in right else False
    elif op == "NOT IN":
        if left in right:
            return False
        return None if None in right else True

    if right is None:
        return None

    try:
        comparison = _COMPARISONS[op]
    except KeyError:
        raise SchemaError(f"unsupported operator in CHECK constraint: {op!r}")

    return comparison(left, right)
