[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "session-config"
version = "0.1.0"
description = "Versioned, mergeable config messages with bencoded diffs and conflict resolution"
requires-python = ">=3.10"
dependencies = []
keywords = ["config", "bencode", "merge", "diff", "sync", "messaging"]
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
    "Topic :: Communications :: Chat",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["session_config"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
