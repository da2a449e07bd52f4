[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dispgate"
version = "1.0.0"
description = "A small HTTP dispatch gateway that serves local routes and forwards API calls to backend processors as JSON over TCP"
requires-python = ">=3.10"
keywords = ["http", "gateway", "dispatcher", "server", "json", "tcp"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "pymysql",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
dispgate = "dispgate.app:main"

[tool.hatch.build.targets.wheel]
packages = ["dispgate"]

[tool.pytest.ini_options]
addopts = "-ra"
