[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gptfailsafe"
version = "0.1.0"
description = "Fail-safe GPT boot chain switching, GPT disk editing and storage health helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["gpt", "partition", "boot", "ufs", "failsafe", "crc32"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["gptfailsafe"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
