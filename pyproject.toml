[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pricefeed"
version = "0.1.0"
description = "Price feed building blocks for on-chain oracles: configuration, deviation filtering, VWAP, price history and TWAP"
requires-python = ">=3.11"
dependencies = []
keywords = ["oracle", "price feed", "vwap", "twap", "exchange rates", "backtest"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Financial and Insurance Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial :: Investment",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
pricefeed = "pricefeed.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["pricefeed"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
