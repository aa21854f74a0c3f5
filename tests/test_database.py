import contextlib
import datetime
import io
import os
import tempfile
import unittest
from unittest import mock

from registrar import (
    ColumnDoesNotExistError,
    ConflictError,
    Database,
    Debugger,
    NotFound,
    RegistrarApiError,
    TableDoesNotExistError,
    Storage,
    UniquenessViolation,
    ValidationError,
)

from .common import create_test_data


class DatabaseTests(unittest.TestCase):
    def setUp(self):
        self.db = Database(":memory:", transaction=False)
        with self.db.transaction():
            self.ids = create_test_data(self.db)

    def tearDown(self):
        self.db.close()

    def test_get(self):
        course = self.db.get("courses", self.ids["cs101"])
        self.assertEqual(course["code"], "CS101")
        self.assertEqual(course["credits"], 4)
        self.assertEqual(list(course.keys()), self.db.schema["courses"].column_names)

        course = self.db.get("courses", self.ids["cs101"], columns=["code", "name"])
        self.assertEqual(list(course.keys()), ["code", "name"])

        with self.assertRaises(NotFound):
            self.db.get("courses", 999)

        with self.assertRaises(TableDoesNotExistError):
            self.db.get("professors", 1)

    def test_list(self):
        courses = self.db.list(
            "courses", {"department_id": self.ids["cs"]}, order_by="code"
        )
        self.assertEqual([c["code"] for c in courses], ["CS101", "CS201", "CS301"])

        courses = self.db.list(
            "courses", order_by="code", descending=True, limit=2, offset=1
        )
        self.assertEqual([c["code"] for c in courses], ["CS301", "CS201"])

        courses = self.db.list("courses", {"instructor_id": None})
        self.assertEqual([c["code"] for c in courses], ["CS301"])

        students = self.db.list(
            "students",
            where="enrollment_date < :cutoff",
            values={"cutoff": datetime.date(2022, 1, 1)},
            order_by=("last_name", "first_name"),
        )
        self.assertEqual([s["first_name"] for s in students], ["Helga", "Ray"])

    def test_list_arguments(self):
        with self.assertRaises(RegistrarApiError):
            self.db.list("courses", descending=True)

        with self.assertRaises(RegistrarApiError):
            self.db.list("courses", offset=1)

        with self.assertRaises(ColumnDoesNotExistError):
            self.db.list("courses", order_by="room")

        with self.assertRaises(ColumnDoesNotExistError):
            self.db.list("courses", {"room": "B12"})

    def test_count(self):
        self.assertEqual(self.db.count("departments"), 3)
        self.assertEqual(self.db.count("enrollments", {"semester": "Fall 2021"}), 3)
        self.assertEqual(self.db.count("enrollments", where="grade IS NOT NULL"), 1)
        self.assertEqual(
            self.db.count(
                "enrollments",
                {"student_id": self.ids["helga"]},
                where="semester = :semester",
                values={"semester": "Spring 2022"},
            ),
            1,
        )

    def test_get_related(self):
        course = self.db.get(
            "courses", self.ids["cs101"], get_related=["instructor_id"]
        )
        self.assertEqual(course["instructor_id"]["last_name"], "Knuth")
        self.assertEqual(course["instructor_id"]["id"], self.ids["knuth"])
        self.assertEqual(
            course["instructor_id"]["hire_date"], datetime.date(1968, 9, 1)
        )
        self.assertEqual(course["department_id"], self.ids["cs"])

        course = self.db.get("courses", self.ids["cs301"], get_related=True)
        self.assertIsNone(course["instructor_id"])
        self.assertEqual(course["department_id"]["name"], "Computer Science")

        enrollments = self.db.list(
            "enrollments",
            {"course_id": self.ids["ling101"]},
            order_by="id",
            get_related=True,
        )
        self.assertEqual(
            [e["student_id"]["first_name"] for e in enrollments], ["Helga", "Ray"]
        )
        self.assertEqual(enrollments[0]["course_id"]["code"], "LING101")

        with self.assertRaises(RegistrarApiError):
            self.db.get("courses", self.ids["cs101"], get_related=["name"])

        with self.assertRaises(ColumnDoesNotExistError):
            self.db.get("courses", self.ids["cs101"], get_related=["room_id"])

    def test_get_related_with_columns(self):
        with self.assertRaises(RegistrarApiError):
            self.db.get(
                "courses",
                self.ids["cs101"],
                columns=["code"],
                get_related=["instructor_id"],
            )

        course = self.db.get(
            "courses",
            self.ids["cs101"],
            columns=["code", "instructor_id"],
            get_related=["instructor_id"],
        )
        self.assertEqual(list(course.keys()), ["code", "instructor_id"])
        self.assertEqual(course["instructor_id"]["last_name"], "Knuth")

        course = self.db.get(
            "courses", self.ids["cs101"], columns=["code"], get_related=True
        )
        self.assertEqual(dict(course), {"code": "CS101"})

        with self.assertRaises(ColumnDoesNotExistError):
            self.db.get(
                "courses", self.ids["cs101"], columns=["room"], get_related=True
            )

    def test_enrolled_at(self):
        # SQLite's current time is in UTC.
        now = datetime.datetime.now(datetime.timezone.utc)
        before = now.replace(tzinfo=None, microsecond=0)
        pk = self.db.create(
            "enrollments",
            {
                "student_id": self.ids["ada"],
                "course_id": self.ids["cs101"],
                "semester": "Fall 2022",
            },
        )
        enrolled_at = self.db.get("enrollments", pk)["enrolled_at"]
        self.assertIsInstance(enrolled_at, datetime.datetime)
        self.assertGreaterEqual(enrolled_at, before)

        pk = self.db.create(
            "enrollments",
            {
                "student_id": self.ids["ada"],
                "course_id": self.ids["cs201"],
                "semester": "Fall 2022",
                "enrolled_at": "2022-08-15 09:30:00",
            },
        )
        self.assertEqual(
            self.db.get("enrollments", pk)["enrolled_at"],
            datetime.datetime(2022, 8, 15, 9, 30),
        )

    def test_update(self):
        self.db.update(
            "enrollments", self.ids["enrollments"][0], {"grade": "B+"}
        )
        self.assertEqual(
            self.db.get("enrollments", self.ids["enrollments"][0])["grade"], "B+"
        )

        with self.assertRaises(RegistrarApiError):
            self.db.update("enrollments", self.ids["enrollments"][0], {})

    def test_ids_are_never_reused(self):
        pk = self.db.create("departments", {"name": "History"})
        self.db.delete("departments", pk)
        new_pk = self.db.create("departments", {"name": "History"})
        self.assertGreater(new_pk, pk)

    def test_supplied_ids_must_be_new(self):
        pk = self.db.create("departments", {"name": "History"})
        self.db.delete("departments", pk)

        with self.assertRaises(ValidationError) as cm:
            self.db.create("departments", {"id": pk, "name": "Music"})

        self.assertEqual(cm.exception.column, "id")
        self.assertEqual(self.db.count("departments", {"name": "Music"}), 0)

        with self.assertRaises(UniquenessViolation):
            self.db.create("departments", {"id": self.ids["cs"], "name": "Music"})

        self.assertEqual(
            self.db.create("departments", {"id": pk + 10, "name": "Music"}), pk + 10
        )
        self.assertGreater(self.db.create("departments", {"name": "Art"}), pk + 10)

    def test_create_many_is_atomic(self):
        with self.assertRaises(UniquenessViolation):
            self.db.create_many(
                "departments",
                [{"name": "History"}, {"name": "Music"}, {"name": "History"}],
            )

        self.assertEqual(self.db.count("departments"), 3)

    def test_transaction(self):
        with self.assertRaises(ValueError):
            with self.db.transaction():
                self.db.create("departments", {"name": "History"})
                self.db.delete("students", self.ids["helga"])
                raise ValueError

        self.assertFalse(self.db.in_transaction)
        self.assertEqual(self.db.count("departments"), 3)
        self.assertEqual(self.db.count("enrollments"), 4)

    def test_nested_transaction(self):
        with self.db.transaction():
            self.db.create("departments", {"name": "History"})
            with self.assertRaises(UniquenessViolation):
                with self.db.transaction():
                    self.db.create("departments", {"name": "Music"})
                    self.db.create("departments", {"name": "Music"})

            self.assertTrue(self.db.in_transaction)

        self.assertEqual(self.db.count("departments", {"name": "History"}), 1)
        self.assertEqual(self.db.count("departments", {"name": "Music"}), 0)

    def test_failed_operation_keeps_transaction(self):
        self.db.begin_transaction()
        self.db.create("departments", {"name": "History"})
        with self.assertRaises(UniquenessViolation):
            self.db.create("departments", {"name": "History"})

        self.assertTrue(self.db.in_transaction)
        self.db.commit()
        self.assertEqual(self.db.count("departments", {"name": "History"}), 1)

    def test_rollback(self):
        self.db.begin_transaction()
        self.db.delete("instructors", self.ids["knuth"])
        self.db.rollback()

        self.assertEqual(self.db.count("instructors"), 3)
        self.assertEqual(
            self.db.get("courses", self.ids["cs101"])["instructor_id"],
            self.ids["knuth"],
        )

    def test_readonly_and_uri(self):
        with self.assertRaises(RegistrarApiError):
            Database("file::memory:", uri=True, readonly=True)


class RecordingDebugger(Debugger):
    def __init__(self):
        self.statements = []
        self.plans = []

    def execute(self, sql, values):
        self.statements.append(sql)

    def cascade(self, plan):
        self.plans.append(plan)


class DebuggerTests(unittest.TestCase):
    def test_custom_debugger(self):
        debugger = RecordingDebugger()
        with Database(":memory:", debugger=debugger) as db:
            ids = create_test_data(db)
            db.delete("students", ids["helga"])

        self.assertTrue(any("BEGIN IMMEDIATE" in sql for sql in debugger.statements))
        self.assertEqual(len(debugger.plans), 1)
        self.assertEqual(debugger.plans[0].origin, ("students", ids["helga"]))

    def test_print_debugger(self):
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            with Database(":memory:", debug=True) as db:
                pk = db.create("departments", {"name": "History"})
                db.delete("departments", pk)

        output = stdout.getvalue()
        self.assertIn("=== SQL DEBUGGER ===", output)
        self.assertIn("INSERT INTO", output)
        self.assertIn("Cascade:", output)
        self.assertIn(f"DELETE departments {pk}", output)


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "records.sqlite3")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_conflict(self):
        other = Database(self.path, transaction=False, timeout=0)
        db = Database(self.path)
        try:
            db.create("departments", {"name": "History"})

            with self.assertRaises(ConflictError) as cm:
                other.create("departments", {"name": "Music"})

            self.assertTrue(cm.exception.retryable)
            self.assertFalse(other.in_transaction)

            # Uncommitted changes are not visible to other connections.
            self.assertEqual(other.count("departments"), 0)

            db.commit()
            self.assertEqual(other.count("departments"), 1)

            # The lock has been released, so a retry succeeds.
            other.create("departments", {"name": "Music"})
            self.assertEqual(other.count("departments"), 2)
        finally:
            db.close()
            other.close()

    def test_connection_closed_on_conflict(self):
        db = Database(self.path)
        try:
            with mock.patch.object(
                Storage, "close", autospec=True, side_effect=Storage.close
            ) as close:
                with self.assertRaises(ConflictError):
                    Database(self.path, timeout=0, create_tables=False)

            close.assert_called_once()
        finally:
            db.close()

    def test_reopen(self):
        with Database(self.path) as db:
            ids = create_test_data(db)

        with Database(self.path, readonly=True) as db:
            self.assertEqual(db.count("enrollments"), 4)
            student = db.get("students", ids["helga"], get_related=True)
            self.assertEqual(student["major_department_id"]["name"], "Computer Science")
