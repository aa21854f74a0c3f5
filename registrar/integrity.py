"""
The integrity engine: checks every row before it is written, and works out what a
delete or a key change does to the rows that reference the affected row.

Deletes and key changes are handled in two phases. ``plan_delete`` and
``plan_update`` walk the foreign-key registry using reads only and return a
``CascadePlan``; any ``RESTRICT`` relationship that would be violated anywhere in the
cascade raises before a single row has been touched. ``apply`` then performs the
planned writes. Callers run both phases inside one transaction.
"""
import collections
import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from attr import Factory, attrs
from sqliteparser import ast, quote

from .constraints import (
    Action,
    Relationship,
    check_passes,
    get_check_expressions,
    is_autoincrement,
    is_not_null,
)
from .debugging import Debugger
from .exceptions import (
    ForeignKeyViolation,
    NotFound,
    RestrictViolation,
    UniquenessViolation,
    ValidationError,
)
from .schema import Schema
from .storage import Row, Storage


@attrs(auto_attribs=True, frozen=True)
class Assignment:
    """
    A foreign-key column of one row set to a new value (``None`` for ``SET NULL``).
    """

    table: str
    pk: int
    column: str
    value: Any
    relationship: Relationship


@attrs(auto_attribs=True)
class CascadePlan:
    """
    The writes that a delete or a key change entails.

    ``deletions`` lists ``(table, pk)`` pairs with every row ahead of the rows it
    references, so they can be deleted in order. ``assignments`` are applied before
    any deletion.
    """

    origin: Tuple[str, int]
    deletions: List[Tuple[str, int]] = Factory(list)
    assignments: List[Assignment] = Factory(list)

    def deletes(self, table: str, pk: int) -> bool:
        return (table, pk) in self.deletions

    def deleted(self, table: str) -> List[int]:
        """
        Returns the primary keys of the rows of ``table`` that the plan deletes.
        """
        return [pk for t, pk in self.deletions if t == table]

    def __str__(self):
        lines = []
        for assignment in self.assignments:
            lines.append(
                f"SET {assignment.table}.{assignment.column} = {assignment.value!r} "
                + f"WHERE id = {assignment.pk}  -- {assignment.relationship.name}"
            )
        for table, pk in self.deletions:
            lines.append(f"DELETE {table} {pk}")
        return "\n".join(lines) if lines else "(no changes)"


class IntegrityEngine:
    schema: Schema
    storage: Storage
    debugger: Optional[Debugger]

    def __init__(
        self, schema: Schema, storage: Storage, *, debugger: Optional[Debugger] = None
    ) -> None:
        self.schema = schema
        self.storage = storage
        self.debugger = debugger

    def check_insert(self, table: str, data: Row) -> Row:
        """
        Validate a row about to be inserted and return its values, normalized for
        storage.

        Raises ``ValidationError``, ``UniquenessViolation`` or ``ForeignKeyViolation``
        if the row cannot be inserted.
        """
        table_schema = self.schema[table]
        values = self.check_values(table, data)

        row = table_schema.defaults()
        row.update(values)

        self.check_required(table, row, supplied=values)
        self.check_constraints(table, row)
        self.check_uniqueness(table, row)
        self.check_key(table, row)
        self.check_foreign_keys(table, row)
        return values

    def check_update(self, table: str, pk: int, data: Row) -> Tuple[Row, Row]:
        """
        Validate an update of the row with primary key ``pk``, and return the row as it
        currently is together with the normalized new values.

        Raises ``NotFound`` if there is no such row, otherwise the same errors as
        ``check_insert``.
        """
        existing = self.storage.get_by_pk(table, pk)
        if existing is None:
            raise NotFound(table, pk)

        values = self.check_values(table, data)

        row = collections.OrderedDict(existing)
        row.update(values)

        self.check_required(table, row, columns=values.keys())
        self.check_constraints(table, row)
        self.check_uniqueness(table, row, columns=values.keys(), exclude_pk=pk)
        self.check_key(table, row, exclude_pk=pk)
        self.check_foreign_keys(table, row, columns=values.keys())
        return existing, values

    def check_values(self, table: str, data: Row) -> Row:
        """
        Check that every key of ``data`` is a column of ``table`` and every value has
        the column's type.
        """
        table_schema = self.schema[table]
        values = collections.OrderedDict()
        for key, value in data.items():
            values[key] = convert_value(table, table_schema[key], value)

        return values

    def check_required(
        self,
        table: str,
        row: Row,
        *,
        supplied: Optional[Row] = None,
        columns: Optional[Iterable[str]] = None,
    ) -> None:
        """
        Check that no ``NOT NULL`` column of ``row`` is null.

        :param supplied: On insert, the values supplied by the caller. Auto-timestamp
            columns that the caller left out are filled in at write time and so are
            not required.
        :param columns: On update, the columns being changed. The others are already
            valid.
        """
        table_schema = self.schema[table]
        names = table_schema.column_names if columns is None else list(columns)
        for name in names:
            if name == table_schema.primary_key and supplied is not None:
                continue

            if (
                supplied is not None
                and name in table_schema.auto_timestamp_columns
                and name not in supplied
            ):
                continue

            if row.get(name) is None and is_not_null(table_schema[name]):
                raise ValidationError(table, name, "a value is required")

    def check_constraints(self, table: str, row: Row) -> None:
        """
        Evaluate every ``CHECK`` constraint of the table against ``row``.
        """
        for column in self.schema[table].columns:
            for expr in get_check_expressions(column):
                if not check_passes(expr, row):
                    raise ValidationError(
                        table,
                        column.name,
                        f"{row.get(column.name)!r} fails the check on this column",
                    )

    def check_uniqueness(
        self,
        table: str,
        row: Row,
        *,
        columns: Optional[Iterable[str]] = None,
        exclude_pk: Optional[int] = None,
    ) -> None:
        """
        Check that no other row of ``table`` shares ``row``'s values for any of the
        table's unique constraints. A constraint whose values include ``None`` cannot
        be violated.

        :param columns: If not None, only check constraints involving these columns.
        :param exclude_pk: The primary key of the row being updated, which is not
            compared against itself.
        """
        table_schema = self.schema[table]
        changed = set(columns) if columns is not None else None
        for constraint in table_schema.unique_constraints:
            if changed is not None and not changed.intersection(constraint.columns):
                continue

            key = tuple(row.get(column) for column in constraint.columns)
            if any(value is None for value in key):
                continue

            conditions = []
            values: Dict[str, Any] = {}
            for i, (column, value) in enumerate(zip(constraint.columns, key)):
                conditions.append(f"{quote(column)} = :u{i}")
                values[f"u{i}"] = value

            if exclude_pk is not None:
                conditions.append(f"{quote(table_schema.primary_key)} != :exclude_pk")
                values["exclude_pk"] = exclude_pk

            if self.storage.count(table, where=" AND ".join(conditions), values=values):
                raise UniquenessViolation(constraint, key[0] if len(key) == 1 else key)

    def check_key(
        self, table: str, row: Row, *, exclude_pk: Optional[int] = None
    ) -> None:
        """
        Check that a primary key chosen by the caller has never been issued before, so
        that a deleted row's key is not handed to a new one. Only applies to
        ``AUTOINCREMENT`` keys; a key equal to ``exclude_pk`` is left alone.
        """
        table_schema = self.schema[table]
        key = row.get(table_schema.primary_key)
        if key is None or key == exclude_pk:
            return

        if not is_autoincrement(table_schema[table_schema.primary_key]):
            return

        last = self.storage.last_issued_key(table)
        if key <= last:
            raise ValidationError(
                table,
                table_schema.primary_key,
                f"key {key!r} may already have been issued; a new key must be "
                + f"greater than {last}",
            )

    def reserve_key(self, table: str, key: int) -> None:
        """
        Record ``key`` as issued, so that ``AUTOINCREMENT`` never hands it out again
        after a row is re-keyed to it.
        """
        table_schema = self.schema[table]
        if is_autoincrement(table_schema[table_schema.primary_key]):
            self.storage.set_last_issued_key(table, key)

    def check_foreign_keys(
        self, table: str, row: Row, *, columns: Optional[Iterable[str]] = None
    ) -> None:
        """
        Check that every non-null foreign key of ``row`` references an existing row.

        :param columns: If not None, only check these columns.
        """
        changed = set(columns) if columns is not None else None
        for relationship in self.schema.relationships_from(table):
            if changed is not None and relationship.column not in changed:
                continue

            value = row.get(relationship.column)
            if value is None:
                continue

            count = self.storage.count(
                relationship.foreign_table,
                where=f"{quote(relationship.foreign_column)} = :value",
                values={"value": value},
            )
            if count == 0:
                raise ForeignKeyViolation(relationship, value)

    def plan_delete(self, table: str, pk: int) -> CascadePlan:
        """
        Work out every write needed to delete the row with primary key ``pk``.

        Raises ``NotFound`` if there is no such row, and ``RestrictViolation`` if the
        row, or any row that would be deleted along with it, is still referenced
        through a ``RESTRICT`` relationship.
        """
        existing = self.storage.get_by_pk(table, pk)
        if existing is None:
            raise NotFound(table, pk)

        plan = CascadePlan(origin=(table, pk))
        self._plan_delete(table, existing, plan, set())

        # Clearing a column of a row that is about to be deleted anyway is pointless.
        plan.assignments = [
            assignment
            for assignment in plan.assignments
            if not plan.deletes(assignment.table, assignment.pk)
        ]
        return plan

    def plan_update(self, table: str, existing: Row, values: Row) -> CascadePlan:
        """
        Work out the writes to referencing rows needed when ``existing`` is updated
        with ``values``. Only changes to a column that some relationship references
        (normally the primary key) have any effect.

        Raises ``RestrictViolation`` if a changed key is still referenced through a
        relationship whose update action is ``RESTRICT``.
        """
        pk = existing[self.schema[table].primary_key]
        plan = CascadePlan(origin=(table, pk))
        for relationship in self.schema.relationships_to(table):
            column = relationship.foreign_column
            if column not in values or values[column] == existing[column]:
                continue

            referencing = self._referencing_pks(relationship, existing[column])
            if not referencing:
                continue

            if relationship.on_update is Action.RESTRICT:
                raise RestrictViolation(relationship, pk, len(referencing))

            new_value = (
                values[column] if relationship.on_update is Action.CASCADE else None
            )
            for child_pk in referencing:
                plan.assignments.append(
                    Assignment(
                        relationship.table,
                        child_pk,
                        relationship.column,
                        new_value,
                        relationship,
                    )
                )

        return plan

    def apply(self, plan: CascadePlan) -> None:
        """
        Perform the writes of a plan returned by ``plan_delete`` or ``plan_update``.
        """
        if self.debugger:
            self.debugger.cascade(plan)

        for assignment in plan.assignments:
            self.storage.update_by_pk(
                assignment.table, assignment.pk, {assignment.column: assignment.value}
            )

        for table, pk in plan.deletions:
            self.storage.delete_by_pk(table, pk)

    def _plan_delete(
        self, table: str, row: Row, plan: CascadePlan, visited: Set[Tuple[str, Any]]
    ) -> None:
        pk = row[self.schema[table].primary_key]
        visited.add((table, pk))

        for relationship in self.schema.relationships_to(table):
            referencing = self._referencing_pks(
                relationship, row[relationship.foreign_column]
            )
            if not referencing:
                continue

            if relationship.on_delete is Action.RESTRICT:
                raise RestrictViolation(relationship, pk, len(referencing))
            elif relationship.on_delete is Action.CASCADE:
                for child_pk in referencing:
                    if (relationship.table, child_pk) in visited:
                        continue

                    child = self.storage.get_by_pk(relationship.table, child_pk)
                    self._plan_delete(relationship.table, child, plan, visited)
            else:
                for child_pk in referencing:
                    plan.assignments.append(
                        Assignment(
                            relationship.table,
                            child_pk,
                            relationship.column,
                            None,
                            relationship,
                        )
                    )

        # Post-order, so that referencing rows are deleted before the rows they
        # reference.
        plan.deletions.append((table, pk))

    def _referencing_pks(self, relationship: Relationship, value: Any) -> List[int]:
        if value is None:
            return []

        child_schema = self.schema[relationship.table]
        rows = self.storage.select(
            relationship.table,
            columns=[child_schema.primary_key],
            where=f"{quote(relationship.table)}.{quote(relationship.column)} = :value",
            values={"value": value},
            order_by=child_schema.primary_key,
        )
        return [row[child_schema.primary_key] for row in rows]


def convert_value(table: str, column: ast.Column, value: Any) -> Any:
    """
    Check that ``value`` suits the type of ``column`` and return it in the form it is
    stored in. ISO 8601 strings are accepted for ``DATE`` and ``TIMESTAMP`` columns.
    """
    if value is None:
        return None

    column_type = str(column.definition.type).upper()
    if column_type == "INTEGER":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(table, column.name, f"expected an integer: {value!r}")
    elif column_type == "TEXT":
        if not isinstance(value, str):
            raise ValidationError(table, column.name, f"expected a string: {value!r}")
    elif column_type == "DATE":
        if isinstance(value, datetime.datetime):
            raise ValidationError(
                table, column.name, f"expected a date, not a datetime: {value!r}"
            )
        elif isinstance(value, str):
            try:
                return datetime.date.fromisoformat(value)
            except ValueError:
                raise ValidationError(table, column.name, f"invalid date: {value!r}")
        elif not isinstance(value, datetime.date):
            raise ValidationError(table, column.name, f"expected a date: {value!r}")
    elif column_type == "TIMESTAMP":
        if isinstance(value, str):
            try:
                return datetime.datetime.fromisoformat(value)
            except ValueError:
                raise ValidationError(
                    table, column.name, f"invalid timestamp: {value!r}"
                )
        elif not isinstance(value, datetime.datetime):
            raise ValidationError(
                table, column.name, f"expected a timestamp: {value!r}"
            )

    return value
