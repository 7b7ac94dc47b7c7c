[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "runiac"
version = "0.1.0"
description = "Building blocks for running infrastructure as code organised into tracks and steps"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "infrastructure-as-code",
    "terraform",
    "arm",
    "deployment",
    "cloud",
    "runner",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Topic :: Software Development :: Build Tools",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
runiac = "runiac.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["runiac"]

[tool.hatch.build.targets.sdist]
include = ["runiac", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
