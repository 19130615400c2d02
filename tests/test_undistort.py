import numpy as np
import pytest
from PIL import Image

from slamkit.undistort import (
    Distortion,
    Intrinsics,
    distort_normalized,
    main,
    undistort_image,
)

NO_DISTORTION = Distortion(0.0, 0.0, 0.0, 0.0)


def test_defaults_come_from_calibration():
    assert Intrinsics().fx == 458.654
    assert Distortion().k1 == -0.28340811


def test_origin_is_fixed_point():
    xd, yd = distort_normalized(0.0, 0.0, Distortion())
    assert float(xd) == 0.0 and float(yd) == 0.0


def test_zero_distortion_is_identity_mapping():
    x = np.linspace(-1, 1, 7)
    y = np.linspace(0.5, -0.5, 7)
    xd, yd = distort_normalized(x, y, NO_DISTORTION)
    assert np.allclose(xd, x) and np.allclose(yd, y)


def test_radial_only_distortion_is_odd():
    d = Distortion(-0.3, 0.07, 0.0, 0.0)
    x, y = np.array([0.2, -0.4]), np.array([0.1, 0.3])
    a = distort_normalized(x, y, d)
    b = distort_normalized(-x, -y, d)
    assert np.allclose(a[0], -b[0]) and np.allclose(a[1], -b[1])


def test_radial_value():
    xd, yd = distort_normalized(1.0, 0.0, Distortion(1.0, 0.0, 0.0, 0.0))
    assert float(xd) == pytest.approx(2.0)
    assert float(yd) == pytest.approx(0.0)


def test_undistort_without_distortion_copies_image():
    rng = np.random.default_rng(0)
    image = rng.integers(0, 256, size=(6, 8), dtype=np.uint8)
    out = undistort_image(image, Intrinsics(2.0, 2.0, 4.0, 4.0), NO_DISTORTION)
    assert out.dtype == image.dtype
    assert np.array_equal(out, image)


def test_sources_outside_image_become_zero():
    image = np.full((4, 4), 200, dtype=np.uint8)
    out = undistort_image(image, Intrinsics(1.0, 1.0, 0.0, 0.0), Distortion(10.0, 0.0, 0.0, 0.0))
    assert out[0, 0] == 200
    assert out[0, 1] == 0
    assert out[3, 3] == 0


def test_rejects_colour_image():
    with pytest.raises(ValueError):
        undistort_image(np.zeros((4, 4, 3), dtype=np.uint8), Intrinsics(), Distortion())


def test_main_writes_image_of_same_size(tmp_path):
    src = tmp_path / "in.png"
    dst = tmp_path / "out.png"
    Image.fromarray(np.full((40, 60), 128, dtype=np.uint8)).save(src)
    assert main([str(src), str(dst)]) == 0
    with Image.open(dst) as result:
        assert result.size == (60, 40)
        assert result.mode == "L"


def test_main_missing_input(tmp_path, capsys):
    assert main([str(tmp_path / "none.png"), str(tmp_path / "out.png")]) == 1
    assert "cannot read image" in capsys.readouterr().out