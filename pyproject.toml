[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "iqsources"
version = "0.1.0"
description = "IQ sample sources for software-defined radio: raw and WAV files, rtl_tcp, ZeroMQ and SpyServer"
requires-python = ">=3.10"
keywords = ["sdr", "iq", "rtl_tcp", "spyserver", "zeromq", "wav", "radio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Ham Radio",
]
dependencies = [
    "pyzmq",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["iqsources"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
