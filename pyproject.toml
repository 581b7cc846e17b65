[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "miniftp"
version = "0.1.0"
description = "A small active-mode FTP server and interactive client"
requires-python = ">=3.10"
dependencies = []
keywords = ["ftp", "server", "client", "file transfer", "active mode"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: File Transfer Protocol (FTP)",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
miniftp-server = "miniftp.server:main"
miniftp-client = "miniftp.client:main"

[tool.hatch.build.targets.wheel]
packages = ["miniftp"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
