import collections
import sqlite3
import warnings
from typing import Any, Dict, List, Optional, Tuple, Union

from sqliteparser import quote

from .debugging import Debugger
from .exceptions import ConflictError, RegistrarApiError
from .schema import Schema

CURRENT_TIMESTAMP_SQL = "STRFTIME('%Y-%m-%d %H:%M:%f', 'now')"


# Type aliases
Row = Dict[str, Any]
Rows = List[Dict]


class Storage:
    """
    The persistence layer: a thin wrapper around a ``sqlite3`` connection.

    ``Storage`` executes exactly the writes it is asked to and enforces nothing on its
    own beyond the constraints SQLite itself checks. Callers that need the integrity
    rules of the schema go through ``registrar.Database`` instead.

    The connection runs in autocommit mode. Transactions are opened explicitly with
    ``Storage.transaction``, which starts a ``BEGIN IMMEDIATE`` transaction (so that
    the write lock is taken before anything is read) or, when a transaction is already
    open, a savepoint inside it.
    """

    connection: sqlite3.Connection
    cursor: sqlite3.Cursor
    debugger: Optional[Debugger]
    schema: Schema
    readonly: bool

    def __init__(
        self,
        path: str,
        schema: Schema,
        *,
        debugger: Optional[Debugger] = None,
        readonly: Optional[bool] = None,
        uri: bool = False,
        timeout: float = 5.0,
        cached_statements: int = 100,
        enforce_foreign_keys: bool = True,
    ) -> None:
        """
        Initialize a ``Storage`` object.

        :param path: The path to the database file. You may pass ``":memory:"`` for an
            in-memory database.
        :param schema: The schema of the database. It is used to resolve primary-key
            columns and the ``get_related`` parameter of ``select``.
        :param debugger: If not None, notified of every SQL statement executed.
        :param readonly: If true, the database will be opened in read-only mode. This
            option is incompatible with ``uri=True``; if you need to pass a URI, then
            append ``?mode=ro`` to make it read-only. Defaults to false.
        :param uri: If true, the ``path`` argument is interpreted as a URI rather than a
            file path.
        :param timeout: How many seconds to wait for another connection to release its
            lock before giving up with ``ConflictError``.
        :param cached_statements: Passed on to ``sqlite3.connect``.
        :param enforce_foreign_keys: If true, SQLite's own foreign-key enforcement is
            turned on with ``PRAGMA foreign_keys = 1``. Checks are deferred to commit
            time, so they only catch writes that bypassed the integrity engine.
        """
        # Validate arguments.
        if readonly is not None:
            if uri is True:
                raise RegistrarApiError(
                    "The `readonly` parameter cannot be set if `uri` is True. Append "
                    + "'?mode=ro' (or omit it if you don't want your connection to be "
                    + "read-only) to your URI instead."
                )
        else:
            # Default value of `readonly` if not specified is False.
            readonly = False

        if path == ":memory":
            warnings.warn("Did you mean to pass `:memory:` instead of `:memory`?")

        if not uri:
            if readonly is True:
                path = f"file:{path}?mode=ro"
            else:
                path = f"file:{path}"

        self.schema = schema
        self.readonly = readonly
        self.debugger = debugger
        self._savepoint_depth = 0

        self.connection = sqlite3.connect(
            path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            uri=True,
            # Setting `isolation_level` to None disables quirky behavior around
            # transactions, per https://stackoverflow.com/questions/30760997/
            isolation_level=None,
            timeout=timeout,
            cached_statements=cached_statements,
        )

        self.connection.row_factory = ordered_dict_row_factory
        self.cursor = self.connection.cursor()

        if enforce_foreign_keys:
            # This must be executed outside a transaction, according to the official
            # SQLite docs: https://sqlite.org/pragma.html#pragma_foreign_keys
            self.sql("PRAGMA foreign_keys = 1")

    def select(
        self,
        table: str,
        *,
        columns: List[str] = [],
        where: str = "",
        values: Dict[str, Any] = {},
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order_by: Optional[Union[Tuple[str], List[str], str]] = None,
        descending: Optional[bool] = None,
        get_related: Union[List[str], bool] = [],
    ) -> Rows:
        """
        Select rows of ``table``, in column order, as ``OrderedDict`` objects.

        ``where`` is raw SQL (without the ``WHERE`` keyword) with ``:name``
        placeholders bound from ``values``; qualify its columns with the table name
        when ``get_related`` is passed, since the query then joins other tables.
        ``order_by`` takes a column or a tuple of columns, and ``offset`` needs
        ``limit``. The other parameters are described under ``Database.list``.
        """
        table_schema = self.schema[table]

        if order_by:
            if isinstance(order_by, str):
                order_by = (order_by,)

            for column in order_by:
                table_schema[column]

            direction = "DESC" if descending is True else "ASC"
            order_clause = "ORDER BY " + ", ".join(
                f"{quote(table)}.{quote(column)} {direction}" for column in order_by
            )
        else:
            if descending is not None:
                raise RegistrarApiError(
                    "The `descending` parameter to `select` requires the `order_by` "
                    + "parameter to be set."
                )
            order_clause = ""

        if limit is not None:
            if offset is not None:
                limit_clause = f"LIMIT {int(limit)} OFFSET {int(offset)}"
            else:
                limit_clause = f"LIMIT {int(limit)}"
        else:
            if offset is not None:
                raise RegistrarApiError(
                    "The `offset` parameter to `select` requires the `limit` parameter "
                    + "to be set."
                )

            limit_clause = ""

        where_clause = f"WHERE {where}" if where else ""

        for column in columns:
            table_schema[column]

        if get_related:
            selection, joins = self._get_related_columns_and_joins(
                table, columns, get_related
            )
        else:
            if columns:
                selection = ", ".join(
                    f"{quote(table)}.{quote(column)}" for column in columns
                )
            else:
                selection = "*"

            joins = ""

        return self.sql(
            f"SELECT {selection} FROM {quote(table)} {joins} {where_clause}"
            + f" {order_clause} {limit_clause}",
            values,
        )

    def get(
        self,
        table: str,
        *,
        columns: List[str] = [],
        where: str = "",
        values: Dict[str, Any] = {},
        get_related: Union[List[str], bool] = [],
    ) -> Optional[Row]:
        """
        Retrieve a single row from the database table and return it as an
        ``OrderedDict`` object, or ``None`` if no row matches.
        """
        rows = self.select(
            table,
            columns=columns,
            where=where,
            values=values,
            limit=1,
            get_related=get_related,
        )
        return rows[0] if rows else None

    def get_by_pk(
        self,
        table: str,
        pk: int,
        *,
        columns: List[str] = [],
        get_related: Union[List[str], bool] = [],
    ) -> Optional[Row]:
        """
        Retrieve a single row from the database table by its primary key.
        """
        return self.get(
            table,
            columns=columns,
            where=f"{self._pk_column(table)} = :pk",
            values={"pk": pk},
            get_related=get_related,
        )

    def count(
        self,
        table: str,
        *,
        where: str = "",
        values: Dict[str, Any] = {},
    ) -> int:
        """
        Return the count of rows matching the parameters.
        """
        self.schema[table]
        where_clause = f"WHERE {where}" if where else ""
        result = self.sql(
            f"SELECT COUNT(*) FROM {quote(table)} {where_clause}",
            values,
            as_tuple=True,
            multiple=False,
        )
        return result[0]

    def insert(
        self,
        table: str,
        data: Row,
        *,
        auto_timestamp_columns: List[str] = [],
    ) -> int:
        """
        Insert ``data`` as a new row of ``table`` as-is and return the new primary key.
        Each column of ``auto_timestamp_columns`` is set to the current UTC time.
        """
        keys = list(data.keys())
        placeholders = ("?," * len(keys))[:-1]
        values = list(data.values())

        extra_columns_list = []
        for column in auto_timestamp_columns:
            keys.append(column)
            extra_columns_list.append(CURRENT_TIMESTAMP_SQL)

        if extra_columns_list:
            extra_columns = (", " if data else "") + ", ".join(extra_columns_list)
        else:
            extra_columns = ""

        if keys:
            sql = f"""
            INSERT INTO {quote(table)}({', '.join(map(quote, keys))})
            VALUES ({placeholders}{extra_columns});
            """
        else:
            sql = f"INSERT INTO {quote(table)} DEFAULT VALUES;"

        self._execute(sql, values)
        return self.cursor.lastrowid

    def update(
        self,
        table: str,
        data: Row,
        *,
        where: str,
        values: Dict[str, Any] = {},
    ) -> int:
        """
        Set the columns in ``data`` on every row matching ``where`` and return how many
        rows changed.
        """
        if not data:
            raise RegistrarApiError(
                "The `data` parameter to `update` cannot be empty."
            )

        values = dict(values)
        updates_list = []
        for key, value in data.items():
            placeholder = f"v{len(values)}"
            values[placeholder] = value
            updates_list.append(f"{quote(key)} = :{placeholder}")

        updates = ", ".join(updates_list)
        self._execute(f"UPDATE {quote(table)} SET {updates} WHERE {where}", values)
        return self.cursor.rowcount

    def update_by_pk(self, table: str, pk: int, data: Row) -> bool:
        """
        Update a single row and return whether it was updated or not.
        """
        return bool(
            self.update(
                table, data, where=f"{self._pk_column(table)} = :pk", values={"pk": pk}
            )
        )

    def delete_by_pk(self, table: str, pk: int) -> bool:
        """
        Delete a single row and return whether it was deleted or not.
        """
        self._execute(
            f"DELETE FROM {quote(table)} WHERE {self._pk_column(table)} = :pk",
            {"pk": pk},
        )
        return bool(self.cursor.rowcount)

    def last_issued_key(self, table: str) -> int:
        """
        Return the largest primary key that has ever been used in ``table``, which must
        have an ``AUTOINCREMENT`` primary key.
        """
        sequence = self.sql(
            "SELECT seq FROM sqlite_sequence WHERE name = :table",
            {"table": table},
            as_tuple=True,
            multiple=False,
        )
        largest = self.sql(
            f"SELECT MAX({quote(self.schema[table].primary_key)}) FROM {quote(table)}",
            as_tuple=True,
            multiple=False,
        )
        return max(sequence[0] if sequence else 0, largest[0] or 0)

    def set_last_issued_key(self, table: str, key: int) -> None:
        # SQLite only advances `sqlite_sequence` on INSERT, not when a key is updated.
        self._execute(
            "DELETE FROM sqlite_sequence WHERE name = :table", {"table": table}
        )
        self._execute(
            "INSERT INTO sqlite_sequence(name, seq) VALUES (:table, :seq)",
            {"table": table, "seq": key},
        )

    def sql(
        self,
        query: str,
        values: Dict[str, Any] = {},
        *,
        as_tuple: bool = False,
        multiple: bool = True,
    ) -> Any:
        """
        Run a raw SQL statement and fetch its results.

        Rows are ``OrderedDict`` objects, or plain tuples with ``as_tuple=True`` (handy
        for ``COUNT(*)``). With ``multiple=False`` only the first row is returned, or
        ``None`` if there is none.
        """
        if not multiple:
            query += " LIMIT 1"

        self._execute(query, values)
        rows = self.cursor.fetchall()
        if as_tuple:
            rows = [tuple(row.values()) for row in rows]

        if multiple:
            return rows

        return rows[0] if rows else None

    def create_tables(self) -> None:
        """
        Create every table of the schema that does not exist yet, referenced tables
        first.
        """
        with self.transaction():
            for statement in self.schema.create_table_statements():
                self.sql(statement)

    def transaction(self) -> "TransactionContextManager":
        """
        Begin a new transaction in a context manager, or a savepoint if a transaction
        is already open. Either way, the changes made inside the ``with`` block are
        undone if it exits with an exception.

        The return value of this method should be ignored.
        """
        return TransactionContextManager(self)

    def begin_transaction(self) -> None:
        """
        Begin a new transaction.

        Unless the connection is read-only the write lock is taken immediately, and
        foreign-key checks are deferred until the transaction commits.
        """
        if self.readonly:
            self.sql("BEGIN")
        else:
            self.sql("BEGIN IMMEDIATE")
            self.sql("PRAGMA defer_foreign_keys = 1")

    def commit(self) -> None:
        self.sql("COMMIT")

    def rollback(self) -> None:
        self.sql("ROLLBACK")

    def savepoint(self) -> str:
        self._savepoint_depth += 1
        name = f"registrar_savepoint_{self._savepoint_depth}"
        self.sql(f"SAVEPOINT {name}")
        return name

    def release(self, name: str, *, rollback: bool = False) -> None:
        if rollback:
            self.sql(f"ROLLBACK TO {name}")
        self.sql(f"RELEASE {name}")
        self._savepoint_depth -= 1

    @property
    def in_transaction(self) -> bool:
        """
        Whether or not the database is currently in a transaction.
        """
        return self.connection.in_transaction

    def close(self) -> None:
        """
        Close the database connection. If a transaction is pending, commit it.
        """
        if self.in_transaction:
            self.commit()
        self.connection.close()

    def _execute(self, sql: str, values: Any) -> None:
        if self.debugger:
            self.debugger.execute(sql, values)

        try:
            self.cursor.execute(sql, values)
        except sqlite3.OperationalError as e:
            if is_conflict_error(e):
                raise ConflictError(str(e)) from e
            raise

    def _pk_column(self, table: str) -> str:
        return f"{quote(table)}.{quote(self.schema[table].primary_key)}"

    def _get_related_columns_and_joins(
        self,
        table: str,
        columns_to_select: List[str],
        get_related: Union[List[str], bool],
    ) -> Tuple[str, str]:
        table_schema = self.schema[table]
        if isinstance(get_related, bool):
            if get_related is True:
                get_related_set = {
                    relationship.column
                    for relationship in self.schema.relationships_from(table)
                    # Don't fetch recursive relations because a table would have to
                    # be joined to itself.
                    if relationship.foreign_table != table
                    and (
                        not columns_to_select
                        or relationship.column in columns_to_select
                    )
                }
            else:
                get_related_set = set()
        else:
            get_related_set = set(get_related)

        for name in sorted(get_related_set):
            table_schema[name]
            if columns_to_select and name not in columns_to_select:
                raise RegistrarApiError(
                    f"{name!r} was passed in `get_related`, so it must also be passed "
                    + "in `columns`"
                )

        columns_list = []
        joins_list = []
        for column in table_schema.columns:
            if columns_to_select and column.name not in columns_to_select:
                continue

            if column.name in get_related_set:
                relationship = self.schema.relationship_for(table, column.name)
                if relationship is None:
                    raise RegistrarApiError(
                        f"{column.name!r} was passed in `get_related`, "
                        + "but it is not a foreign key column"
                    )

                # The joined table is aliased after the column, so that two foreign
                # keys to the same table don't clash.
                alias = quote(f"{column.name}_row")
                related_table_schema = self.schema[relationship.foreign_table]
                # The primary key must come first; see `ordered_dict_row_factory`.
                related_columns = sorted(
                    related_table_schema.columns,
                    key=lambda c: c.name != related_table_schema.primary_key,
                )
                for related_column in related_columns:
                    name = f"{column.name}____{related_column.name}"
                    columns_list.append(
                        f"{alias}.{quote(related_column.name)} AS {quote(name)}"
                    )

                joins_list.append(
                    f"LEFT JOIN {quote(relationship.foreign_table)} AS {alias} ON "
                    + f"{quote(table)}.{quote(column.name)} = "
                    + f"{alias}.{quote(relationship.foreign_column)}"
                )
            else:
                columns_list.append(f"{quote(table)}.{quote(column.name)}")

        return ", ".join(columns_list), "\n".join(joins_list)


class TransactionContextManager:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self.savepoint: Optional[str] = None

    def __enter__(self):
        if self.storage.in_transaction:
            self.savepoint = self.storage.savepoint()
        else:
            self.storage.begin_transaction()

    def __exit__(self, exc_type, exc_value, exc_traceback):
        if self.savepoint is not None:
            self.storage.release(self.savepoint, rollback=exc_type is not None)
        elif exc_type is not None:
            if self.storage.in_transaction:
                self.storage.rollback()
        else:
            try:
                self.storage.commit()
            except Exception:
                # A failed COMMIT (e.g. a lock that could not be upgraded, or a
                # deferred foreign-key violation) leaves the transaction open.
                if self.storage.in_transaction:
                    self.storage.rollback()
                raise


def is_conflict_error(error: sqlite3.OperationalError) -> bool:
    name = getattr(error, "sqlite_errorname", "")
    if name.startswith("SQLITE_BUSY") or name.startswith("SQLITE_LOCKED"):
        return True

    message = str(error)
    return "database is locked" in message or "database table is locked" in message


def ordered_dict_row_factory(cursor: sqlite3.Cursor, row: Tuple[Any]) -> Row:
    r: Row = collections.OrderedDict()

    for i, column in enumerate(cursor.description):
        name = column[0]
        value = row[i]

        # When `get_related` is passed to `Storage.select`, the SQL query fetches
        # columns from foreign key relationships and names them with the format
        # {original_table_column}____{related_table_column}, i.e. if the `students`
        # table has a `major_department_id` column that points to the `departments`
        # table, then `major_department_id____name` would be one of the columns in a
        # query on the `students` table.
        if "____" in name:
            base_name, child_name = name.split("____", maxsplit=1)

            # Null foreign keys show up as a run of columns that are all None, but we
            # want the related row itself to be None rather than a dictionary of
            # Nones. The primary key of the related row always comes first, so it
            # decides which of the two we are looking at.
            dct = r.get(base_name)
            if dct is None:
                if base_name not in r:
                    if value is None:
                        r[base_name] = None
                    else:
                        r[base_name] = collections.OrderedDict([(child_name, value)])
            else:
                dct[child_name] = value
        else:
            r[name] = value

    return r
