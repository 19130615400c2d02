"""Visual SLAM building blocks: Lie groups, geometry, estimation and mapping."""

__version__ = "0.1.0"

__all__ = [
    "algorithm",
    "backend",
    "camera",
    "config",
    "curve_fitting",
    "dataset",
    "dense_mono",
    "frame",
    "g2o_types",
    "geometry",
    "lie",
    "mappoint",
    "pointcloud",
    "pose_graph",
    "slam_map",
    "trajectory",
    "undistort",
]