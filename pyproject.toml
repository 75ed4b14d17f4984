[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "kmodtools"
version = "0.1.0"
description = "Kernel module tree tooling: modules.dep and binary index generation, static device nodes, and a kmod command front end"
requires-python = ">=3.10"
dependencies = []
keywords = ["kernel", "modules", "modules.dep", "modules.devname", "static-nodes", "linux"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System Kernels :: Linux",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
kmod = "kmodtools.cli:main"

[tool.setuptools.packages.find]
include = ["kmodtools*"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
