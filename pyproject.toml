[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "crawlforge"
version = "1.0.0"
description = "A web crawling service with worker threads, proxy pools, randomised browser profiles, multi-backend storage and an HTTP API."
requires-python = ">=3.10"
keywords = ["crawler", "web-crawler", "scraping", "proxy", "http-api"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: Flask",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
]
dependencies = [
    "pyyaml>=6.0",
    "requests>=2.28",
    "pymongo>=4.0",
    "redis>=4.5",
    "flask>=2.2",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
crawlforge = "crawlforge.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["crawlforge"]

[tool.hatch.build.targets.sdist]
include = ["crawlforge", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
