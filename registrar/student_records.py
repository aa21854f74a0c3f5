"""
The student-records schema: departments, instructors, students, courses and
enrollments, and the foreign-key registry that governs them.
"""
from . import columns
from .constraints import Action, Relationship
from .schema import Schema, Table

DEPARTMENTS = Table(
    "departments",
    [
        columns.primary_key("id"),
        columns.text("name", unique=True),
        columns.text("office_location", required=False),
        columns.text("contact_email", required=False),
        columns.text("contact_phone", required=False),
    ],
)

INSTRUCTORS = Table(
    "instructors",
    [
        columns.primary_key("id"),
        columns.text("first_name"),
        columns.text("last_name"),
        columns.text("email", unique=True),
        columns.text("phone", required=False, unique=True),
        columns.date("hire_date", required=False),
        columns.text("office", required=False),
        columns.foreign_key("department_id", "departments"),
    ],
)

STUDENTS = Table(
    "students",
    [
        columns.primary_key("id"),
        columns.text("first_name"),
        columns.text("last_name"),
        columns.date("date_of_birth", required=False),
        columns.text("email", unique=True),
        columns.text("phone", required=False),
        columns.text("address", required=False),
        columns.text("city", required=False),
        columns.text("state", required=False),
        columns.text("postal_code", required=False),
        columns.date("enrollment_date"),
        columns.foreign_key("major_department_id", "departments", required=False),
    ],
)

COURSES = Table(
    "courses",
    [
        columns.primary_key("id"),
        columns.text("code", unique=True),
        columns.text("name"),
        columns.text("description", required=False),
        columns.integer("credits", min=1),
        columns.foreign_key("department_id", "departments"),
        columns.foreign_key("instructor_id", "instructors", required=False),
    ],
)

ENROLLMENTS = Table(
    "enrollments",
    [
        columns.primary_key("id"),
        columns.foreign_key("student_id", "students"),
        columns.foreign_key("course_id", "courses"),
        columns.text("semester"),
        columns.timestamp("enrolled_at"),
        columns.text("grade", required=False),
    ],
    unique_together=[("student_id", "course_id", "semester")],
    auto_timestamp_columns=["enrolled_at"],
)

RELATIONSHIPS = (
    Relationship(
        "instructors",
        "department_id",
        "departments",
        on_delete=Action.RESTRICT,
        on_update=Action.CASCADE,
    ),
    Relationship(
        "students",
        "major_department_id",
        "departments",
        on_delete=Action.SET_NULL,
        on_update=Action.CASCADE,
        nullable=True,
    ),
    Relationship(
        "courses",
        "department_id",
        "departments",
        on_delete=Action.RESTRICT,
        on_update=Action.CASCADE,
    ),
    Relationship(
        "courses",
        "instructor_id",
        "instructors",
        on_delete=Action.SET_NULL,
        on_update=Action.CASCADE,
        nullable=True,
    ),
    Relationship(
        "enrollments",
        "student_id",
        "students",
        on_delete=Action.CASCADE,
        on_update=Action.CASCADE,
    ),
    Relationship(
        "enrollments",
        "course_id",
        "courses",
        on_delete=Action.CASCADE,
        on_update=Action.CASCADE,
    ),
)

SCHEMA = Schema(
    [DEPARTMENTS, INSTRUCTORS, STUDENTS, COURSES, ENROLLMENTS], RELATIONSHIPS
)
