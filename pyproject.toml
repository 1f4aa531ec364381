[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "surveycore"
version = "0.1.0"
description = "Answer consistency rules, distribution steering, psychometric answer plans, reverse-fill planning and run-state tracking for automated survey submission"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "survey",
    "questionnaire",
    "psychometrics",
    "reverse-fill",
    "consistency-rules",
]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["surveycore"]

[tool.hatch.build.targets.sdist]
include = ["surveycore", "tests", "README.md", "pyproject.toml"]

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
