def create_test_data(db):
    """
    Populate a student-records database and return the primary keys of the rows
    created, keyed by a short name.
    """
    cs = db.create(
        "departments",
        {
            "name": "Computer Science",
            "office_location": "Gates 104",
            "contact_email": "cs@example.edu",
        },
    )
    ling = db.create("departments", {"name": "Linguistics"})
    math = db.create("departments", {"name": "Mathematics"})

    knuth = db.create(
        "instructors",
        {
            "first_name": "Donald",
            "last_name": "Knuth",
            "email": "knuth@example.edu",
            "hire_date": "1968-09-01",
            "department_id": cs,
        },
    )
    chomsky = db.create(
        "instructors",
        {
            "first_name": "Noam",
            "last_name": "Chomsky",
            "email": "chomsky@example.edu",
            "phone": "555-0101",
            "department_id": ling,
        },
    )
    liskov = db.create(
        "instructors",
        {
            "first_name": "Barbara",
            "last_name": "Liskov",
            "email": "liskov@example.edu",
            "department_id": cs,
        },
    )

    helga = db.create(
        "students",
        {
            "first_name": "Helga",
            "last_name": "Heapsort",
            "email": "helga@example.edu",
            "date_of_birth": "2001-04-12",
            "enrollment_date": "2021-09-01",
            "major_department_id": cs,
        },
    )
    ray = db.create(
        "students",
        {
            "first_name": "Ray",
            "last_name": "Recursion",
            "email": "ray@example.edu",
            "enrollment_date": "2020-09-01",
            "major_department_id": ling,
        },
    )
    ada = db.create(
        "students",
        {
            "first_name": "Ada",
            "last_name": "Array",
            "email": "ada@example.edu",
            "enrollment_date": "2022-09-01",
        },
    )

    cs101 = db.create(
        "courses",
        {
            "code": "CS101",
            "name": "Introduction to Programming",
            "credits": 4,
            "department_id": cs,
            "instructor_id": knuth,
        },
    )
    cs201 = db.create(
        "courses",
        {
            "code": "CS201",
            "name": "Data Structures",
            "credits": 3,
            "department_id": cs,
            "instructor_id": knuth,
        },
    )
    cs301 = db.create(
        "courses",
        {
            "code": "CS301",
            "name": "Operating Systems",
            "credits": 3,
            "department_id": cs,
        },
    )
    ling101 = db.create(
        "courses",
        {
            "code": "LING101",
            "name": "Syntax",
            "credits": 3,
            "department_id": ling,
            "instructor_id": chomsky,
        },
    )

    enrollments = db.create_many(
        "enrollments",
        [
            {"student_id": helga, "course_id": cs101, "semester": "Fall 2021"},
            {"student_id": helga, "course_id": cs201, "semester": "Spring 2022"},
            {
                "student_id": helga,
                "course_id": ling101,
                "semester": "Fall 2021",
                "grade": "A",
            },
            {"student_id": ray, "course_id": ling101, "semester": "Fall 2021"},
        ],
    )

    return dict(
        cs=cs,
        ling=ling,
        math=math,
        knuth=knuth,
        chomsky=chomsky,
        liskov=liskov,
        helga=helga,
        ray=ray,
        ada=ada,
        cs101=cs101,
        cs201=cs201,
        cs301=cs301,
        ling101=ling101,
        enrollments=enrollments,
    )
