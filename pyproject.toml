[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dxsring"
version = "0.1.0"
description = "Shared-memory SPSC ring queues, timeout queues and network device helpers for data transfer offload"
requires-python = ">=3.10"
dependencies = []
keywords = ["spsc", "ring buffer", "queue", "timeouts", "sctp", "networking", "nccl"]
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
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dxsring"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"
