[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xvfs"
version = "0.1.0"
description = "An in-memory Unix-style file system with buffer cache, redo log, inodes, pipes and descriptor calls"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "inode", "buffer-cache", "redo-log", "pipe", "teaching"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["xvfs"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
