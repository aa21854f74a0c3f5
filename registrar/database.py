from typing import Any, Dict, List, Optional, Tuple, Union

from sqliteparser import quote

from .debugging import Debugger, PrintDebugger
from .exceptions import NotFound, RegistrarApiError
from .integrity import CascadePlan, IntegrityEngine
from .schema import Schema
from .storage import Row, Rows, Storage, TransactionContextManager
from .student_records import SCHEMA


class Database:
    """
    A class to represent a connection to a student-records database. Typically used as
    a context manager::

        with Database("records.sqlite3") as db:
            cs = db.create("departments", {"name": "Computer Science"})
            ...

    Every ``create``, ``update`` and ``delete`` is checked against the integrity rules
    of the schema (required columns, column types, ``CHECK`` constraints, uniqueness
    and foreign keys) and, for deletes and key changes, applies the referential
    actions of the foreign-key registry to the rows that reference the affected row.
    Each such operation is atomic: if it raises, the database is left exactly as it
    was.

    On creation, the ``Database`` connection will open a SQL transaction which will be
    either committed or rolled back at the end of the ``with`` statement, depending on
    whether an exception occurs. Operations inside it run in savepoints, so a rejected
    operation does not undo the ones before it.

    You can also have multiple transactions over the life of the connection::

        with Database("records.sqlite3", transaction=False) as db:
            with db.transaction():
                ...

            with db.transaction():
                ...

    With ``transaction=False``, every operation outside a ``with db.transaction()``
    block is committed on its own.
    """

    schema: Schema
    storage: Storage
    integrity: IntegrityEngine
    debugger: Optional[Debugger]

    def __init__(
        self,
        path: str,
        *,
        schema: Schema = SCHEMA,
        transaction: bool = True,
        debug: bool = False,
        debugger: Optional[Debugger] = None,
        readonly: Optional[bool] = None,
        uri: bool = False,
        timeout: float = 5.0,
        cached_statements: int = 100,
        enforce_foreign_keys: bool = True,
        create_tables: bool = True,
    ) -> None:
        """
        Initialize a ``Database`` object.

        :param path: The path to the database file. You may pass ``":memory:"`` for an
            in-memory database.
        :param schema: The schema to enforce. Defaults to the student-records schema in
            ``registrar.student_records``.
        :param transaction: If true, a transaction is automatically opened. When the
            ``Database`` class is used in a ``with`` statement, the transaction will be
            committed at the end (or rolled back if an exception occurs), so either all
            of the changes in the ``with`` block will be enacted, or none of them.

            If false, every operation is committed as soon as it succeeds, unless it
            is inside an explicit ``with db.transaction()`` block.
        :param debug: If true, each SQL statement executed and each cascade applied
            will be printed to standard output.
        :param debugger: A custom ``Debugger`` to notify instead. Overrides ``debug``.
        :param readonly: If true, the database will be opened in read-only mode.
            Passed on to ``Storage``.
        :param uri: If true, the ``path`` argument is interpreted as a URI rather than a
            file path.
        :param timeout: How many seconds to wait for a lock held by another connection
            before failing with ``ConflictError``.
        :param cached_statements: Passed on to ``sqlite3.connect``.
        :param enforce_foreign_keys: If true, SQLite's own (deferred) foreign-key
            checks are turned on as well.
        :param create_tables: If true, any table of the schema missing from the
            database is created. Ignored for read-only connections.
        """
        if debugger is None and debug:
            debugger = PrintDebugger()

        self.schema = schema
        self.debugger = debugger
        self.storage = Storage(
            path,
            schema,
            debugger=debugger,
            readonly=readonly,
            uri=uri,
            timeout=timeout,
            cached_statements=cached_statements,
            enforce_foreign_keys=enforce_foreign_keys,
        )
        self.integrity = IntegrityEngine(schema, self.storage, debugger=debugger)

        try:
            if create_tables and not self.storage.readonly:
                self.storage.create_tables()

            if transaction:
                self.storage.begin_transaction()
        except Exception:
            # E.g. `ConflictError` when another connection holds the write lock.
            self.storage.close()
            raise

    def create(self, table: str, data: Row) -> int:
        """
        Insert a new row and return its primary key.

        Primary keys are assigned by the database and are never reused, even after
        the row that held one is deleted. Auto-timestamp columns (e.g.
        ``enrollments.enrolled_at``) left out of ``data`` are set to the current time.

        :param table: The database table.
        :param data: The row to insert, as a dictionary from column names to column
            values.
        """
        table_schema = self.schema[table]
        with self.transaction():
            values = self.integrity.check_insert(table, data)
            auto_timestamp_columns = [
                column
                for column in table_schema.auto_timestamp_columns
                if column not in values
            ]
            return self.storage.insert(
                table, values, auto_timestamp_columns=auto_timestamp_columns
            )

    def create_many(self, table: str, data: Rows) -> List[int]:
        """
        Insert multiple rows at once and return their primary keys. If any row is
        rejected, none of them are inserted.
        """
        with self.transaction():
            return [self.create(table, row) for row in data]

    def get(
        self,
        table: str,
        pk: int,
        *,
        columns: List[str] = [],
        get_related: Union[List[str], bool] = [],
    ) -> Row:
        """
        Retrieve a single row by its primary key, as an ``OrderedDict`` object.

        Raises ``NotFound`` if there is no such row.

        :param table: The database table to query.
        :param pk: The primary key of the row to return.
        :param columns: Only return these columns.
        :param get_related: Same as for ``Database.list``.
        """
        row = self.storage.get_by_pk(
            table, pk, columns=columns, get_related=get_related
        )
        if row is None:
            raise NotFound(table, pk)

        return row

    def list(
        self,
        table: str,
        filter: Dict[str, Any] = {},
        *,
        where: str = "",
        values: Dict[str, Any] = {},
        order_by: Optional[Union[Tuple[str], List[str], str]] = None,
        descending: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        get_related: Union[List[str], bool] = [],
    ) -> Rows:
        """
        Return a list of database rows as ``OrderedDict`` objects.

        :param table: The database table to query.
        :param filter: Only return rows whose columns equal these values. A value of
            ``None`` matches null columns.
        :param where: An additional SQL condition, without the ``WHERE`` keyword.
            WARNING: This value is directly interpolated into the SQL statement. Do not
            pass untrusted input; put ``:placeholder`` in the SQL and pass the value in
            ``values`` instead.
        :param values: A dictionary of values to interpolate into ``where``.
        :param order_by: Order the results by this column, or these columns.
        :param descending: If true, return results in descending order.
        :param limit: An integer limit to the number of rows returned.
        :param offset: Skip this many rows. Requires ``limit``.
        :param get_related: A list of foreign-key columns whose referenced rows are
            embedded in the returned dictionaries (``None`` for a null foreign key). If
            true, all foreign-key columns are expanded.
        """
        where, values = self._build_where(table, filter, where, values)
        return self.storage.select(
            table,
            where=where,
            values=values,
            order_by=order_by,
            descending=descending,
            limit=limit,
            offset=offset,
            get_related=get_related,
        )

    def count(
        self,
        table: str,
        filter: Dict[str, Any] = {},
        *,
        where: str = "",
        values: Dict[str, Any] = {},
    ) -> int:
        """
        Return the count of rows matching the parameters, which are the same as for
        ``Database.list``.
        """
        where, values = self._build_where(table, filter, where, values)
        return self.storage.count(table, where=where, values=values)

    def update(self, table: str, pk: int, data: Row) -> None:
        """
        Update a single row.

        Raises ``NotFound`` if there is no such row. If ``data`` changes the primary
        key, the rows referencing the old key are updated according to the
        ``on_update`` action of their relationship.

        :param table: The database table.
        :param pk: The primary key of the row to update.
        :param data: The columns to update, as a dictionary from column names to column
            values.
        """
        if not data:
            raise RegistrarApiError(
                "The `data` parameter to `update` cannot be empty."
            )

        with self.transaction():
            existing, values = self.integrity.check_update(table, pk, data)
            plan = self.integrity.plan_update(table, existing, values)
            if plan.assignments:
                self.integrity.apply(plan)
            self.storage.update_by_pk(table, pk, values)

            new_pk = values.get(self.schema[table].primary_key, pk)
            if new_pk != pk:
                self.integrity.reserve_key(table, new_pk)

    def delete(self, table: str, pk: int) -> CascadePlan:
        """
        Delete a single row, along with everything its relationships cascade to, and
        return the plan that was carried out.

        Raises ``NotFound`` if there is no such row, and ``RestrictViolation`` (with no
        row deleted or modified) if the deletion is blocked by a ``RESTRICT``
        relationship anywhere in the cascade.
        """
        with self.transaction():
            plan = self.integrity.plan_delete(table, pk)
            self.integrity.apply(plan)
            return plan

    def transaction(self) -> TransactionContextManager:
        """
        Begin a new transaction in a context manager, or a savepoint if a transaction
        is already open.

        Intended for use as::

            with Database(path, transaction=False) as db:
               with db.transaction():
                   ...

        The return value of this method should be ignored.
        """
        return self.storage.transaction()

    def begin_transaction(self) -> None:
        """
        Begin a new transaction.

        Most users do not need this method. Instead, they should either use the default
        transaction opened by ``Database`` as a context manager, or they should
        explicitly manage their transactions with ``with db.transaction()``
        statements.
        """
        self.storage.begin_transaction()

    def commit(self) -> None:
        """
        Commit the current transaction.

        Most users do not need this method. See the note to
        ``Database.begin_transaction``.
        """
        self.storage.commit()

    def rollback(self) -> None:
        """
        Roll back the current transaction.

        Most users do not need this method. See the note to
        ``Database.begin_transaction``.
        """
        self.storage.rollback()

    @property
    def in_transaction(self) -> bool:
        """
        Whether or not the database is currently in a transaction.
        """
        return self.storage.in_transaction

    def close(self) -> None:
        """
        Close the database connection. If a transaction is pending, commit it.
        """
        self.storage.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        if self.in_transaction:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()

        self.close()

    def _build_where(
        self, table: str, filter: Dict[str, Any], where: str, values: Dict[str, Any]
    ) -> Tuple[str, Dict[str, Any]]:
        table_schema = self.schema[table]
        conditions = []
        values = dict(values)
        for i, (column, value) in enumerate(filter.items()):
            table_schema[column]
            qualified = f"{quote(table)}.{quote(column)}"
            if value is None:
                conditions.append(f"{qualified} IS NULL")
            else:
                placeholder = f"filter{i}"
                values[placeholder] = value
                conditions.append(f"{qualified} = :{placeholder}")

        if where:
            conditions.append(f"({where})")

        return " AND ".join(conditions), values
