[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "riskguard"
version = "0.1.0"
description = "Content risk control service: sensitive words, spam, harassment and semantic checks behind an HTTP API"
requires-python = ">=3.10"
keywords = [
    "moderation",
    "content-safety",
    "spam",
    "harassment",
    "sensitive-words",
    "risk-control",
]
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
    "Framework :: Flask",
    "Topic :: Text Processing :: Filters",
]
dependencies = [
    "flask",
    "redis",
    "pyyaml",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
    "pytest-mock",
]

[project.scripts]
riskguard-server = "riskguard.server:main"

[tool.hatch.build.targets.wheel]
packages = ["riskguard"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
