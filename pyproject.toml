[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kernelsim"
version = "0.1.0"
description = "Teaching operating-system kernel: process scheduling, resources and I/O over a simple TCP protocol"
requires-python = ">=3.10"
dependencies = []
keywords = ["scheduler", "kernel", "operating-system", "round-robin", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
kernelsim = "kernelsim.kernel_main:main"

[tool.hatch.build.targets.wheel]
packages = ["kernelsim"]

[tool.pytest.ini_options]
addopts = "-ra"
