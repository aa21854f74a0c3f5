import unittest

from sqliteparser import ast

from registrar import Action, Relationship, UniqueConstraint, columns
from registrar.constraints import (
    check_passes,
    evaluate,
    get_check_expressions,
    get_default,
    get_foreign_table,
    is_not_null,
    is_unique,
)


class CheckConstraintTests(unittest.TestCase):
    def test_minimum(self):
        [expr] = get_check_expressions(columns.integer("credits", min=1))
        self.assertFalse(check_passes(expr, {"credits": 0}))
        self.assertFalse(check_passes(expr, {"credits": -3}))
        self.assertTrue(check_passes(expr, {"credits": 1}))
        self.assertTrue(check_passes(expr, {"credits": 12}))
        # NULL passes a CHECK constraint, as in SQL.
        self.assertTrue(check_passes(expr, {"credits": None}))

    def test_minimum_and_maximum(self):
        exprs = get_check_expressions(columns.integer("credits", min=1, max=6))
        self.assertEqual(len(exprs), 2)
        self.assertTrue(all(check_passes(e, {"credits": 6}) for e in exprs))
        self.assertFalse(all(check_passes(e, {"credits": 7}) for e in exprs))

    def test_required_text(self):
        [expr] = get_check_expressions(columns.text("name"))
        self.assertFalse(check_passes(expr, {"name": ""}))
        self.assertTrue(check_passes(expr, {"name": "Syntax"}))

    def test_optional_text_has_no_check(self):
        column = columns.text("phone", required=False)
        self.assertEqual(get_check_expressions(column), [])

    def test_choices(self):
        exprs = get_check_expressions(columns.text("grade", choices=["A", "B", "C"]))
        self.assertTrue(all(check_passes(e, {"grade": "B"}) for e in exprs))
        self.assertFalse(all(check_passes(e, {"grade": "F"}) for e in exprs))
        self.assertFalse(all(check_passes(e, {"grade": ""}) for e in exprs))

        [expr] = get_check_expressions(
            columns.text("grade", required=False, choices=["A", "B", "C"])
        )
        self.assertTrue(check_passes(expr, {"grade": None}))
        self.assertTrue(check_passes(expr, {"grade": "A"}))
        self.assertFalse(check_passes(expr, {"grade": "F"}))

    def test_three_valued_logic(self):
        x = ast.Identifier("x")
        self.assertIsNone(evaluate(ast.Infix("=", x, ast.Integer(1)), {"x": None}))
        self.assertIs(evaluate(ast.Infix("IS", x, ast.Null()), {"x": None}), True)
        self.assertIs(evaluate(ast.Infix("IS NOT", x, ast.Null()), {"x": 1}), True)

        null = ast.Infix("=", x, ast.Integer(1))
        false = ast.Infix("=", ast.Integer(1), ast.Integer(2))
        true = ast.Infix("=", ast.Integer(1), ast.Integer(1))
        row = {"x": None}
        self.assertIs(evaluate(ast.Infix("AND", null, false), row), False)
        self.assertIsNone(evaluate(ast.Infix("AND", null, true), row))
        self.assertIs(evaluate(ast.Infix("OR", null, true), row), True)
        self.assertIsNone(evaluate(ast.Infix("OR", null, false), row))

    def test_in_with_null(self):
        x = ast.Identifier("x")
        values = ast.ExpressionList([ast.Integer(1), ast.Null()])
        self.assertIs(evaluate(ast.Infix("IN", x, values), {"x": 1}), True)
        self.assertIsNone(evaluate(ast.Infix("IN", x, values), {"x": 2}))
        self.assertIs(evaluate(ast.Infix("NOT IN", x, values), {"x": 1}), False)


class ColumnTests(unittest.TestCase):
    def test_column_helpers(self):
        column = columns.foreign_key("department_id", "departments")
        self.assertEqual(get_foreign_table(column), "departments")
        self.assertTrue(is_not_null(column))
        self.assertFalse(is_unique(column))

        column = columns.text("phone", required=False, unique=True)
        self.assertIsNone(get_foreign_table(column))
        self.assertFalse(is_not_null(column))
        self.assertTrue(is_unique(column))

    def test_default(self):
        self.assertEqual(get_default(columns.text("semester", default="Fall")), "Fall")
        self.assertEqual(get_default(columns.integer("credits", default=3)), 3)
        self.assertIsNone(get_default(columns.integer("credits")))


class RegistryTypesTests(unittest.TestCase):
    def test_action(self):
        self.assertEqual(str(Action.SET_NULL), "SET NULL")
        self.assertIs(Action("CASCADE"), Action.CASCADE)

    def test_relationship(self):
        relationship = Relationship(
            "courses",
            "instructor_id",
            "instructors",
            on_delete=Action.SET_NULL,
            on_update=Action.CASCADE,
            nullable=True,
        )
        self.assertEqual(relationship.name, "courses.instructor_id -> instructors.id")
        self.assertEqual(
            str(relationship),
            "courses.instructor_id -> instructors.id ON DELETE SET NULL "
            + "ON UPDATE CASCADE",
        )

    def test_unique_constraint(self):
        self.assertEqual(
            UniqueConstraint("students", ("email",)).name, "students.email"
        )
        self.assertEqual(
            str(UniqueConstraint("enrollments", ("student_id", "course_id"))),
            "UNIQUE enrollments(student_id, course_id)",
        )
