import collections
from typing import Dict, Iterable, List, Optional, Sequence

from sqliteparser import ast, quote

from .constraints import (
    Action,
    Relationship,
    UniqueConstraint,
    get_default,
    get_foreign_table,
    is_not_null,
    is_primary_key,
    is_unique,
)
from .exceptions import ColumnDoesNotExistError, SchemaError, TableDoesNotExistError


class Table:
    """
    A class to represent a SQL table as part of a schema defined in Python.
    """

    name: str
    primary_key: str
    unique_together: List[Sequence[str]]
    auto_timestamp_columns: List[str]
    _columns: Dict[str, ast.Column]

    def __init__(
        self,
        name: str,
        columns: List[ast.Column],
        *,
        unique_together: List[Sequence[str]] = [],
        auto_timestamp_columns: List[str] = [],
    ) -> None:
        """
        Initialize a ``Table`` object.

        :param name: The name of the table.
        :param columns: The ordered list of columns of the table, as returned by the
            functions in ``registrar.columns``. Exactly one must be a primary key.
        :param unique_together: Groups of columns whose combined values must be unique
            across the table.
        :param auto_timestamp_columns: Columns that are set to the current time when a
            row is inserted without a value for them.
        """
        self.name = name
        self._columns = collections.OrderedDict()

        for column in columns:
            if column.name in self._columns:
                raise SchemaError(
                    f"Column {column.name!r} was defined multiple times in table "
                    + f"{name!r}."
                )

            self._columns[column.name] = column

        primary_keys = [column.name for column in columns if is_primary_key(column)]
        if len(primary_keys) != 1:
            raise SchemaError(f"Table {name!r} must have exactly one primary key.")
        self.primary_key = primary_keys[0]

        grouped_columns = [column for group in unique_together for column in group]
        for column_name in grouped_columns + list(auto_timestamp_columns):
            if column_name not in self._columns:
                raise ColumnDoesNotExistError(name, column_name)

        self.unique_together = [tuple(group) for group in unique_together]
        self.auto_timestamp_columns = list(auto_timestamp_columns)

    def __getitem__(self, key: str) -> ast.Column:
        try:
            return self._columns[key]
        except KeyError:
            raise ColumnDoesNotExistError(self.name, key)

    def __contains__(self, key: str) -> bool:
        return key in self._columns

    @property
    def columns(self) -> List[ast.Column]:
        """
        Returns the columns in the table as a list.
        """
        return list(self._columns.values())

    @property
    def column_names(self) -> List[str]:
        return list(self._columns.keys())

    @property
    def unique_constraints(self) -> List[UniqueConstraint]:
        """
        Returns every uniqueness constraint of the table: the primary key, each
        ``UNIQUE`` column, and each group in ``unique_together``.
        """
        constraints = [UniqueConstraint(self.name, (self.primary_key,))]
        for column in self.columns:
            if is_unique(column) and column.name != self.primary_key:
                constraints.append(UniqueConstraint(self.name, (column.name,)))

        for group in self.unique_together:
            constraints.append(UniqueConstraint(self.name, group))

        return constraints

    def defaults(self) -> Dict[str, object]:
        return collections.OrderedDict(
            (column.name, get_default(column)) for column in self.columns
        )

    def create_table_statement(self) -> str:
        definitions = [str(column) for column in self.columns]
        for group in self.unique_together:
            definitions.append(f"UNIQUE({', '.join(map(quote, group))})")

        body = ",\n  ".join(definitions)
        return f"CREATE TABLE IF NOT EXISTS {quote(self.name)}(\n  {body}\n)"


class Schema:
    """
    A class to represent an entire database schema together with its foreign-key
    registry.

    The registry is the only place where referential actions are declared. It is
    checked against the tables when the schema is constructed, and is read-only
    afterwards.
    """

    _tables: Dict[str, Table]
    relationships: tuple

    def __init__(
        self, tables: List[Table], relationships: Iterable[Relationship] = ()
    ) -> None:
        self._tables = collections.OrderedDict()
        for table in tables:
            if table.name in self._tables:
                raise SchemaError(f"Table {table.name!r} was defined multiple times.")

            self._tables[table.name] = table

        self.relationships = tuple(relationships)
        self._validate_relationships()

    def __getitem__(self, key: str) -> Table:
        try:
            return self._tables[key]
        except KeyError:
            raise TableDoesNotExistError(key)

    def __contains__(self, key: str) -> bool:
        return key in self._tables

    @property
    def tables(self) -> List[Table]:
        """
        Returns the tables in the schema as a list.
        """
        return list(self._tables.values())

    @property
    def table_names(self) -> List[str]:
        """
        Returns the names of the tables in the schema as a list.
        """
        return list(self._tables.keys())

    def relationships_from(self, table: str) -> List[Relationship]:
        """
        Returns the relationships whose foreign-key column lives in ``table``.
        """
        return [r for r in self.relationships if r.table == table]

    def relationships_to(self, table: str) -> List[Relationship]:
        """
        Returns the relationships that reference rows of ``table``.
        """
        return [r for r in self.relationships if r.foreign_table == table]

    def relationship_for(self, table: str, column: str) -> Optional[Relationship]:
        for relationship in self.relationships:
            if relationship.table == table and relationship.column == column:
                return relationship

        return None

    def table_order(self) -> List[str]:
        """
        Returns the table names ordered so that every table comes after the tables it
        references. Ties keep the order in which the tables were declared.
        """
        dependencies = {
            name: {
                r.foreign_table for r in self.relationships_from(name)
            } - {name}
            for name in self.table_names
        }

        ordered: List[str] = []
        while len(ordered) < len(dependencies):
            ready = [
                name
                for name in self.table_names
                if name not in ordered and dependencies[name] <= set(ordered)
            ]
            if not ready:
                remaining = [name for name in self.table_names if name not in ordered]
                raise SchemaError(
                    f"Circular foreign-key dependency between tables: {remaining!r}"
                )

            ordered.extend(ready)

        return ordered

    def create_table_statements(self) -> List[str]:
        return [self[name].create_table_statement() for name in self.table_order()]

    def _validate_relationships(self) -> None:
        seen = set()
        for relationship in self.relationships:
            table = self[relationship.table]
            foreign_table = self[relationship.foreign_table]
            column = table[relationship.column]

            if relationship.foreign_column not in foreign_table:
                raise ColumnDoesNotExistError(
                    foreign_table.name, relationship.foreign_column
                )

            if get_foreign_table(column) != foreign_table.name:
                raise SchemaError(
                    f"{relationship.name}: column {column.name!r} is not declared as "
                    + f"a foreign key to {foreign_table.name!r}"
                )

            if relationship.nullable == is_not_null(column):
                raise SchemaError(
                    f"{relationship.name}: nullable={relationship.nullable} does not "
                    + "match the column definition"
                )

            if not relationship.nullable and Action.SET_NULL in (
                relationship.on_delete,
                relationship.on_update,
            ):
                raise SchemaError(
                    f"{relationship.name}: SET NULL requires a nullable column"
                )

            key = (relationship.table, relationship.column)
            if key in seen:
                raise SchemaError(
                    f"{relationship.name}: column has more than one relationship"
                )
            seen.add(key)

        for table in self.tables:
            for column in table.columns:
                foreign_table = get_foreign_table(column)
                if foreign_table is not None and (table.name, column.name) not in seen:
                    raise SchemaError(
                        f"{table.name}.{column.name} references {foreign_table!r} "
                        + "but has no registered relationship"
                    )
