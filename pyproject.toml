[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ytrssil"
version = "0.1.0"
description = "Self-hosted YouTube subscription tracker built on channel RSS feeds, with a web interface and JSON API"
requires-python = ">=3.10"
keywords = ["youtube", "rss", "atom", "subscriptions", "feed", "video", "flask", "sqlite"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
]
dependencies = [
    "flask>=2.3",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
]

[project.scripts]
ytrssil = "ytrssil.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["ytrssil"]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
