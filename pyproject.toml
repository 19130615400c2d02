[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamkit"
version = "0.1.0"
description = "Visual SLAM building blocks: Lie groups, triangulation, curve fitting, depth filtering, point clouds, pose graphs and a stereo map back end"
requires-python = ">=3.10"
keywords = [
    "slam",
    "visual odometry",
    "lie groups",
    "se3",
    "so3",
    "triangulation",
    "pose graph",
    "bundle adjustment",
    "point cloud",
    "depth estimation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy>=1.23",
    "scipy>=1.9",
    "pillow>=9.0",
    "pyyaml>=6.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
slamkit-curve-fitting = "slamkit.curve_fitting:main"
slamkit-trajectory-error = "slamkit.trajectory:main"
slamkit-undistort = "slamkit.undistort:main"
slamkit-dense-mono = "slamkit.dense_mono:main"
slamkit-pointcloud = "slamkit.pointcloud:main"
slamkit-pose-graph = "slamkit.pose_graph:main"

[tool.hatch.build.targets.wheel]
packages = ["slamkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
warn_unused_ignores = true
