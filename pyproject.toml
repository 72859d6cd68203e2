[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tierfs"
version = "1.2.0"
description = "Tiering engine that moves files between storage tiers by popularity, with a control command"
requires-python = ">=3.10"
dependencies = []
keywords = ["storage", "tiering", "filesystem", "hsm", "popularity"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
tierctl = "tierfs.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["tierfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
