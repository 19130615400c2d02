# slamkit

Building blocks for visual SLAM, written with NumPy and SciPy.

## Modules

- `slamkit.geometry`: `Quaternion` (Hamilton product, inverse, rotation of
  vectors, conversion to and from rotation matrices and angle-axis),
  `angle_axis_to_matrix`, `euler_angles_zyx`, `isometry` (4x4 rigid
  transforms) and `transform_between_frames`.
- `slamkit.lie`: the `SO3` and `SE3` groups with `exp`, `log`, `hat`, `vee`,
  `inverse`, composition and point transformation through `@`, and
  `SE3.adjoint`. Tangent vectors of SE(3) hold the translation first and
  the rotation last.
- `slamkit.algorithm`: `triangulation(poses, points)`, linear SVD
  triangulation of one point from several world-to-camera poses and
  normalised-plane observations; it returns `None` when the solution is
  poorly conditioned. `to_vec2` turns a point-like object into a 2-vector.
- `slamkit.camera`: a pinhole `Camera` with `K()` and conversions between
  world, camera and pixel coordinates.
- `slamkit.curve_fitting`: fitting `y = exp(a x² + b x + c)` to noisy samples
  with `gauss_newton` or `levenberg_marquardt`; `generate_data`,
  `residuals` and `jacobian` are exposed as well.
- `slamkit.trajectory`: `parse_trajectory` and `read_trajectory` for lines
  of `time tx ty tz qx qy qz qw`, and `rmse` between two trajectories.
- `slamkit.undistort`: radial-tangential undistortion of a grey-scale image
  (`Intrinsics`, `Distortion`, `distort_normalized`, `undistort_image`).
- `slamkit.dense_mono`: monocular dense depth estimation with epipolar
  search, zero-mean NCC matching and a Gaussian depth filter, for 640x480
  images with fixed intrinsics.
- `slamkit.pointcloud`: point clouds from RGB-D images (`depth_to_points`)
  or stereo disparity (`disparity_to_points`), `read_poses`,
  `statistical_outlier_removal` and `voxel_filter`.
- `slamkit.pose_graph`: reading, optimising (Levenberg-Marquardt on se(3))
  and writing pose graphs in the `VERTEX_SE3:QUAT` / `EDGE_SE3:QUAT` text
  format. Vertex 0 is held fixed.
- `slamkit.frame`, `slamkit.mappoint`, `slamkit.slam_map`: frames and their
  features, landmarks with their observations, and a `Map` that keeps a
  sliding window of at most seven active keyframes.
- `slamkit.config`: `Config`, process-wide parameters loaded from a YAML
  file (a leading `%YAML` line and `!!opencv-matrix` nodes are accepted).
- `slamkit.dataset`: `Dataset`, which reads `calib.txt` with four cameras
  and yields half-size stereo frames from `image_0/` and `image_1/`.
- `slamkit.g2o_types`: reprojection edges `EdgeProjectionPoseOnly` and
  `EdgeProjection` with analytic Jacobians, `pose_oplus` and the Huber
  kernel weight `huber_weight`.
- `slamkit.backend`: `Backend`, which bundle-adjusts the map's active
  keyframes and landmarks on a worker thread after each `update_map()`,
  marks observations with large errors as outliers and removes them from
  their landmarks. `optimize` can also be called directly.

## Installation

From a checkout of the package:

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Library use

```python
import numpy as np
from slamkit.lie import SO3, SE3

# A rotation of 90 degrees about the z axis.
R = SO3.exp(np.array([0.0, 0.0, np.pi / 2]))
print(R.matrix())
print(R.log())                     # back to the rotation vector
print(SO3.vee(SO3.hat(R.log())))   # hat and vee are inverse to each other

# A left-multiplied perturbation.
updated = SO3.exp(np.array([1e-4, 0.0, 0.0])) @ R

# se(3) vectors hold the translation first, then the rotation.
T = SE3(R.matrix(), np.array([1.0, 0.0, 0.0]))
xi = T.log()
print(xi)
print(SE3.exp(xi).matrix())
```

## Command-line tools

Fit the exponential curve to generated noisy data and print the estimate
(`--method gauss-newton|levenberg-marquardt`, `--points`, `--sigma`,
`--seed`, `--iterations`, `--verbose`):

```
slamkit-curve-fitting
```

Compare an estimated trajectory with its ground truth and print the RMSE;
given one file, it prints the number of poses instead. Without arguments it
reads `./example/groundtruth.txt` and `./example/estimated.txt`:

```
slamkit-trajectory-error groundtruth.txt estimated.txt
```

Undistort a grey-scale image (the output defaults to `undistorted.png`):

```
slamkit-undistort distorted.png
```

Estimate a dense depth map from a monocular sequence with known poses and
save it, rounded to 8 bits, to `depth.png` (`--output` to change):

```
slamkit-dense-mono path/to/test_dataset
```

Join RGB-D frames and their poses into one point cloud, written as an ASCII
PCD file (`--preset joinmap|dense`, `--data-dir`, `--frames`, `--filter`,
`--output`, default `map.pcd`):

```
slamkit-pointcloud
```

Optimise a pose graph and write the result to `result_lie.g2o`
(`--output`, `--iterations`, `--verbose`):

```
slamkit-pose-graph sphere.g2o
```

## What the package does not do

- There is no visual odometry front end: no feature detection, optical-flow
  tracking or keyframe selection, and no command that runs a full stereo
  pipeline over a dataset. The map, dataset and back-end classes are pieces
  to be driven by your own code.
- Nothing is displayed: there is no trajectory, point-cloud or map viewer.
- There is no place recognition or loop closure, no occupancy mapping and
  no surface reconstruction.