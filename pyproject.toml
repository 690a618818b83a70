[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sentrylite"
version = "0.1.0"
description = "Error-reporting building blocks: stack traces, tracing spans, envelopes and HTTP transports"
requires-python = ">=3.10"
dependencies = []
keywords = ["sentry", "tracing", "stacktrace", "envelope", "error-reporting"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: System :: Logging",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sentrylite"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
