import datetime
import sqlite3

from . import columns
from .constraints import Action, Relationship, UniqueConstraint
from .database import Database
from .debugging import Debugger, PrintDebugger
from .exceptions import (
    ColumnDoesNotExistError,
    ConflictError,
    ForeignKeyViolation,
    IntegrityViolation,
    NotFound,
    RegistrarApiError,
    RegistrarError,
    RestrictViolation,
    SchemaError,
    TableDoesNotExistError,
    UniquenessViolation,
    ValidationError,
)
from .integrity import Assignment, CascadePlan, IntegrityEngine
from .schema import Schema, Table
from .storage import Storage
from .student_records import RELATIONSHIPS, SCHEMA


def sqlite3_convert_date(b):
    return datetime.date.fromisoformat(b.decode("utf8"))


def sqlite3_adapt_date(d):
    return d.isoformat()


def sqlite3_convert_timestamp(b):
    return datetime.datetime.fromisoformat(b.decode("utf8"))


def sqlite3_adapt_timestamp(t):
    return t.isoformat(" ")


sqlite3.register_converter("DATE", sqlite3_convert_date)
sqlite3.register_adapter(datetime.date, sqlite3_adapt_date)
sqlite3.register_converter("TIMESTAMP", sqlite3_convert_timestamp)
sqlite3.register_adapter(datetime.datetime, sqlite3_adapt_timestamp)

del sqlite3_convert_date
del sqlite3_adapt_date
del sqlite3_convert_timestamp
del sqlite3_adapt_timestamp
