[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "acvdvolume"
version = "1.0.0"
description = "Volume label cleaning, MetaImage region reading, slice extraction and uniform clustering on item graphs"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "pillow",
]
keywords = ["metaimage", "mhd", "volume", "labels", "clustering", "voronoi"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
volume-ooc-slice = "acvdvolume.oocslice:main"

[tool.hatch.build.targets.wheel]
packages = ["acvdvolume"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
