[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dbmigrate"
version = "0.1.0"
description = "Database schema migrations: apply versioned up/down migrations to a database, with SQLite and in-memory drivers."
requires-python = ">=3.10"
dependencies = []
keywords = ["migrations", "database", "schema", "sqlite", "versioning"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dbmigrate"]

[tool.hatch.build.targets.sdist]
include = ["dbmigrate", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
