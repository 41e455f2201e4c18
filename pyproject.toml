[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "renovate_operator"
version = "0.1.0"
description = "Scheduling, discovery and execution of Renovate runs as Kubernetes jobs"
requires-python = ">=3.10"
dependencies = []
keywords = ["renovate", "kubernetes", "operator", "dependencies", "jobs"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["renovate_operator"]

[tool.pytest.ini_options]
addopts = "-ra"
