"""Nox configuration for spatialrel."""

from __future__ import annotations

import os

import nox

PYTHON_VERSIONS = ["3.9", "3.10", "3.11", "3.12", "3.13"]
DATABASES = ["sqlite", "postgresql"]

pyproject = nox.project.load_toml("pyproject.toml")

nox.options.sessions = ["tests"]


@nox.session(python=PYTHON_VERSIONS)
@nox.parametrize("database", DATABASES)
def tests(session: nox.Session, database: str) -> None:
    """run the main test suite"""

    _tests(session, database)


@nox.session(name="coverage")
def coverage(session: nox.Session) -> None:
    """Run tests with coverage."""

    _tests(session, "sqlite", coverage=True)


def _tests(
    session: nox.Session, database: str, coverage: bool = False
) -> None:
    # PYTHONNOUSERSITE - this *MUST* be set so that the ./lib/ import
    # set up explicitly in test/conftest.py is *disabled*, so that
    # when spatialrel is built into the .nox area, we use that and not the
    # local checkout
    session.env["PYTHONNOUSERSITE"] = "1"

    cmd = ["python", "-m", "pytest"]

    if coverage:
        cmd.extend(
            [
                "--cov=spatialrel",
                "--cov-append",
                "--cov-report",
                "term",
                "--cov-report",
                "xml",
            ],
        )
        session.install("-e", ".")
        session.install(
            *nox.project.dependency_groups(pyproject, "coverage")
        )
    else:
        session.install(".")

    session.install(*nox.project.dependency_groups(pyproject, "tests"))

    deps = nox.project.dependency_groups(pyproject, f"tests-{database}")
    if deps:
        session.install(*deps)

    # looks up a base URL in the [db] section of setup.cfg; e.g.
    # TOX_POSTGRESQL overrides it for CI
    cmd.extend(
        os.environ.get(f"TOX_{database.upper()}", f"--db {database}").split()
    )

    cmd.extend(session.posargs)
    session.run(*cmd)


@nox.session(name="pep484")
def test_pep484(session: nox.Session) -> None:
    """Run mypy type checking."""

    session.install(*nox.project.dependency_groups(pyproject, "mypy"))

    session.install("-e", ".")

    session.run("mypy", "noxfile.py", "./lib/spatialrel")


@nox.session(name="pep8")
def test_pep8(session: nox.Session) -> None:
    """Run linting and formatting checks."""

    session.install("-e", ".")

    session.install(*nox.project.dependency_groups(pyproject, "lint"))

    for cmd in [
        "flake8 ./lib/ ./test/ noxfile.py",
        "black --check ./lib/ ./test/ noxfile.py",
    ]:
        session.run(*cmd.split())
