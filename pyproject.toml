[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lbengine"
version = "0.1.0"
description = "Cluster configuration, config sources, HA state and firewall mark allocation for a load-balancer engine"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "load-balancer",
    "high-availability",
    "healthcheck",
    "vserver",
    "configuration",
    "firewall-mark",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["lbengine"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
