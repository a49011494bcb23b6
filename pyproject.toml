[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netshoot"
version = "0.1.0"
description = "Discover hosts and identify tunnelable ones by sending custom payloads through them to a cooperating server."
requires-python = ">=3.10"
dependencies = []
keywords = ["network", "payload", "tunnel", "host-discovery", "speedtest"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
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

[project.scripts]
netshoot = "netshoot.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["netshoot"]

[tool.pytest.ini_options]
addopts = "-ra"
