[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ctfdiff"
version = "0.1.0"
description = "Compare the CTF type information of two ELF files or raw CTF blobs"
requires-python = ">=3.10"
dependencies = []
keywords = ["ctf", "elf", "debugging", "types", "diff", "compact-type-format"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ctfdiff = "ctfdiff.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["ctfdiff"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
