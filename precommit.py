"""
Pre-commit configuration for git.

This file was created by precommit (https://github.com/iafisher/precommit).
You are welcome to edit it yourself to customize your pre-commit hook.
"""
from iprecommit import checks


def init(precommit):
    precommit.check(checks.NoStagedAndUnstagedChanges())
    precommit.check(checks.NoWhitespaceInFilePath())
    precommit.check(checks.DoNotSubmit())

    # Check Python format with black.
    precommit.check(checks.PythonFormat())

    # Lint Python code with flake8.
    precommit.check(checks.PythonLint())

    # Check the order of Python imports with isort.
    precommit.check(checks.PythonImportOrder())

    # Run the test suite.
    precommit.check(
        checks.Command("UnitTests", [".venv/bin/python", "-m", "unittest", "discover"])
    )

    precommit.check(
        checks.Command(
            "PythonTypes",
            [".venv/bin/mypy", "--ignore-missing-imports", "registrar"],
        )
    )
