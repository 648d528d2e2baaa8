[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "framestages"
version = "0.1.0"
description = "Camera frame post-processing stages: motion detection, negation, classification, pose decoding and object detection tracking"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "camera",
    "image-processing",
    "motion-detection",
    "pose-estimation",
    "object-detection",
    "classification",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["framestages"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
