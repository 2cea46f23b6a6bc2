[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fluidapi"
version = "0.1.0"
description = "WSGI endpoint routing with middleware chains, a JSON HTTP client, and SQL insert and query helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["wsgi", "http", "api", "middleware", "json", "client", "sql", "database"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fluidapi"]

[tool.pytest.ini_options]
addopts = "-ra"
