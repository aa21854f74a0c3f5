class RegistrarError(Exception):
    retryable = False


class RegistrarApiError(RegistrarError):
    pass


class SchemaError(RegistrarError):
    pass


class ColumnDoesNotExistError(RegistrarError):
    pass


class TableDoesNotExistError(RegistrarError):
    pass


class NotFound(RegistrarError):
    def __init__(self, table, pk):
        super().__init__(f"no row with primary key {pk!r} in table {table!r}")
        self.table = table
        self.pk = pk


class ConflictError(RegistrarError):
    """
    Raised when a transaction could not acquire the database lock in time. The
    operation had no effect and may be retried.
    """

    retryable = True


class IntegrityViolation(RegistrarError):
    """
    Base class for errors caused by data that would break an integrity rule. Retrying
    the same operation with the same data will fail again.
    """


class ValidationError(IntegrityViolation):
    def __init__(self, table, column, message):
        super().__init__(f"{table}.{column}: {message}")
        self.table = table
        self.column = column


class UniquenessViolation(IntegrityViolation):
    def __init__(self, constraint, value):
        super().__init__(f"duplicate value for {constraint.name}: {value!r}")
        self.constraint = constraint
        self.value = value


class ForeignKeyViolation(IntegrityViolation):
    def __init__(self, relationship, value):
        super().__init__(
            f"{relationship.name}: no row in {relationship.foreign_table!r} "
            + f"with {relationship.foreign_column} = {value!r}"
        )
        self.relationship = relationship
        self.value = value


class RestrictViolation(IntegrityViolation):
    def __init__(self, relationship, pk, count):
        super().__init__(
            f"{relationship.name}: row {pk!r} of {relationship.foreign_table!r} is "
            + f"still referenced by {count} row(s) of {relationship.table!r}"
        )
        self.relationship = relationship
        self.pk = pk
        self.count = count
