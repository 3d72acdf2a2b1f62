[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bspkit"
version = "0.1.0"
description = "BSP trees, polygon faces, collision queries, an implicit spring-network solver and small 6D solvers for 3D geometry"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["bsp", "geometry", "collision", "cloth", "springs", "icp", "conjugate-gradient"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Mathematics",
    "Topic :: Multimedia :: Graphics :: 3D Modeling",
]

[project.optional-dependencies]
test = [
    "pytest",
    "hypothesis",
]

[tool.hatch.build.targets.wheel]
packages = ["bspkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
