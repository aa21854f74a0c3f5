import cProfile
import sqlite3
import sys
import timeit

from registrar import SCHEMA, Database

N = 5000


def benchmark_registrar():
    with Database(":memory:") as db:
        department = db.create("departments", {"name": "Computer Science"})
        student = db.create(
            "students",
            {
                "first_name": "Helga",
                "last_name": "Heapsort",
                "email": "helga@example.edu",
                "enrollment_date": "2021-09-01",
            },
        )

        for n in range(N):
            course = db.create(
                "courses",
                {
                    "code": f"CS{n}",
                    "name": f"Course {n}",
                    "credits": 3,
                    "department_id": department,
                },
            )
            db.create(
                "enrollments",
                {"student_id": student, "course_id": course, "semester": "Fall 2021"},
            )

        db.delete("students", student)


def benchmark_sqlite3():
    with sqlite3.connect(":memory:") as conn:
        for statement in SCHEMA.create_table_statements():
            conn.execute(statement)

        conn.execute("INSERT INTO departments(name) VALUES ('Computer Science')")
        conn.execute(
            "INSERT INTO students(first_name, last_name, email, enrollment_date) "
            + "VALUES ('Helga', 'Heapsort', 'helga@example.edu', '2021-09-01')"
        )

        for n in range(N):
            cursor = conn.execute(
                "INSERT INTO courses(code, name, credits, department_id) "
                + "VALUES (?, ?, 3, 1)",
                (f"CS{n}", f"Course {n}"),
            )
            conn.execute(
                "INSERT INTO enrollments(student_id, course_id, semester, enrolled_at) "
                + "VALUES (1, ?, 'Fall 2021', STRFTIME('%Y-%m-%d %H:%M:%f', 'now'))",
                (cursor.lastrowid,),
            )

        conn.execute("DELETE FROM enrollments WHERE student_id = 1")
        conn.execute("DELETE FROM students WHERE id = 1")


def benchmark():
    sqlite3_results = timeit.timeit(
        "benchmark_sqlite3()", number=1, setup="from __main__ import benchmark_sqlite3"
    )
    print(f"sqlite3: {sqlite3_results:0.3f} seconds")

    registrar_results = timeit.timeit(
        "benchmark_registrar()",
        number=1,
        setup="from __main__ import benchmark_registrar",
    )
    print(f"registrar: {registrar_results:0.3f} seconds")


def profile():
    cProfile.run("benchmark_registrar()", sort="cumulative")


if __name__ == "__main__":
    if "--profile" in sys.argv:
        profile()
    else:
        benchmark()
