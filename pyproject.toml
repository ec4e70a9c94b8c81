[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "distill"
version = "0.2.0"
description = "Context window tools for LLM agents: session budgets, hierarchical summarization, cache-boundary tracking, sensitivity classification and usage metrics."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "llm",
    "context-window",
    "summarization",
    "prompt-caching",
    "sessions",
    "sqlite",
    "prometheus",
    "server-sent-events",
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
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["distill"]

[tool.hatch.build.targets.sdist]
include = ["distill", "tests", "pyproject.toml"]

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
disallow_untyped_defs = true
