[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "distbuild"
version = "0.1.0"
description = "Distributed build components: artifact and file caches, HTTP transport for builds and heartbeats, a job scheduler and a build client"
requires-python = ">=3.10"
keywords = ["build", "distributed", "cache", "scheduler", "artifacts", "wsgi"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "werkzeug",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["distbuild"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
