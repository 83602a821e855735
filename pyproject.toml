[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "jtagtools"
version = "0.1.0"
description = "JEDEC fuse-map files, Motorola S-record images and AVR JTAG programming helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["jtag", "avr", "jedec", "srecord", "cpld", "fuses", "programmer"]
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
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
jedecparse = "jtagtools.jedecparse:main"

[tool.hatch.build.targets.wheel]
packages = ["jtagtools"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
