"""
Column builders for ``registrar.Table``.

Each function returns a ``sqliteparser`` column node. The node is rendered into the
``CREATE TABLE`` statement, and its constraints are read back by the integrity engine
so that a bad row is rejected before it reaches SQLite.
"""
from typing import Any, List, Optional

from sqliteparser import ast


def date(
    name: str,
    *,
    required: bool = True,
    default: Optional[str] = None,
    unique: bool = False,
) -> ast.Column:
    """
    A ``DATE`` column for values in ISO 8601 format, e.g. ``2021-01-01``. Values are
    read back as ``datetime.date`` objects.
    """
    return _column(name, "DATE", required=required, default=default, unique=unique)


def foreign_key(
    name: str,
    foreign_table: str,
    *,
    required: bool = True,
    unique: bool = False,
) -> ast.Column:
    """
    A foreign key column.

    The column is declared with a bare ``REFERENCES`` clause. What happens to it when
    the referenced row is deleted or re-keyed is decided by the ``Relationship``
    registered for it in the ``Schema``, not by SQLite.
    """
    references = ast.ForeignKeyConstraint(
        columns=[], foreign_table=foreign_table, foreign_columns=[], on_delete=None
    )
    return _column(
        name, "INTEGER", required=required, unique=unique, extra=[references]
    )


def integer(
    name: str,
    *,
    required: bool = True,
    choices: List[int] = [],
    default: Optional[int] = None,
    max: Optional[int] = None,
    min: Optional[int] = None,
    unique: bool = False,
) -> ast.Column:
    """
    An ``INTEGER`` column.

    ``min`` and ``max`` are inclusive bounds, enforced both by a ``CHECK`` constraint
    in the database and by the integrity engine before a row is written.
    """
    bounds = []
    if min is not None:
        bounds.append(_check(_compare(name, ">=", min)))
    if max is not None:
        bounds.append(_check(_compare(name, "<=", max)))

    return _column(
        name,
        "INTEGER",
        required=required,
        choices=choices,
        default=default,
        unique=unique,
        extra=bounds,
    )


def primary_key(name: str, *, autoincrement: bool = True) -> ast.Column:
    """
    A primary key column.

    With ``autoincrement`` (the default) SQLite never hands out the same key twice,
    even after the row holding it has been deleted.
    """
    return _column(
        name,
        "INTEGER",
        extra=[ast.PrimaryKeyConstraint(autoincrement=autoincrement)],
    )


def text(
    name: str,
    *,
    required: bool = True,
    choices: List[str] = [],
    default: Optional[str] = None,
    unique: bool = False,
) -> ast.Column:
    """
    A ``TEXT`` column.

    A required column is ``NOT NULL`` and also rejects the empty string. An optional
    column is nullable, so that several rows can leave a ``unique`` column unset
    without colliding with each other.
    """
    return _column(
        name,
        "TEXT",
        required=required,
        choices=choices,
        default=default,
        unique=unique,
        extra=[_check(_compare(name, "!=", ""))] if required else [],
    )


def timestamp(
    name: str,
    *,
    required: bool = True,
    default: Optional[str] = None,
    unique: bool = False,
) -> ast.Column:
    """
    A ``TIMESTAMP`` column, e.g. ``2021-01-01 01:00:00.000``, read back as
    ``datetime.datetime`` objects.
    """
    return _column(
        name, "TIMESTAMP", required=required, default=default, unique=unique
    )


def _column(
    name: str,
    type: str,
    *,
    required: bool = True,
    choices: List[Any] = [],
    default: Any = None,
    unique: bool = False,
    extra: List[Any] = [],
) -> ast.Column:
    constraints: List[Any] = []
    if required:
        constraints.append(ast.NotNullConstraint())

    constraints.extend(extra)

    if choices:
        allowed = ast.Infix(
            "IN", ast.Identifier(name), ast.ExpressionList(list(map(_literal, choices)))
        )
        if not required:
            unset = ast.Infix("IS", ast.Identifier(name), ast.Null())
            allowed = ast.Infix("OR", unset, allowed)
        constraints.append(_check(allowed))

    if unique:
        constraints.append(ast.UniqueConstraint())

    return ast.Column(
        name=name,
        definition=ast.ColumnDefinition(
            type=type,
            default=None if default is None else _literal(default),
            constraints=constraints,
        ),
    )


def _check(expr):
    return ast.CheckConstraint(expr=expr)


def _compare(name: str, operator: str, value: Any):
    return ast.Infix(
        operator=operator, left=ast.Identifier(name), right=_literal(value)
    )


def _literal(value: Any):
    # bool is a subclass of int, and is stored as 0 or 1.
    if isinstance(value, str):
        return ast.String(value)
    elif isinstance(value, (bool, int)):
        return ast.Integer(int(value))
    else:
        raise TypeError(f"unsupported literal in column definition: {value!r}")
