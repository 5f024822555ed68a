[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "peerpressure"
version = "0.1.0"
description = "BitTorrent building blocks: bencode, peer IDs, a BEP 5 DHT node with BEP 42/43/44/51 support, and multi-source peer discovery."
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = [
    "bittorrent",
    "bencode",
    "dht",
    "kademlia",
    "krpc",
    "peer-to-peer",
    "torrent",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
    "Topic :: Internet",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["peerpressure"]

[tool.hatch.build.targets.sdist]
include = [
    "peerpressure",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
