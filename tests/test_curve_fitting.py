import numpy as np
import pytest

from slamkit.curve_fitting import (
    INITIAL_PARAMS,
    TRUE_PARAMS,
    gauss_newton,
    generate_data,
    jacobian,
    levenberg_marquardt,
    main,
    residuals,
)


def test_generate_data_samples_and_determinism():
    x, y = generate_data(100, TRUE_PARAMS, 1.0, 7)
    x2, y2 = generate_data(100, TRUE_PARAMS, 1.0, 7)
    assert len(x) == 100 and len(y) == 100
    assert np.allclose(x, np.arange(100) / 100.0)
    assert np.array_equal(y, y2)


def test_generate_data_without_noise_lies_on_curve():
    x, y = generate_data(50, TRUE_PARAMS, 0.0, 1)
    assert np.allclose(residuals(TRUE_PARAMS, x, y), 0.0)


def test_generate_data_rejects_negative_count():
    with pytest.raises(ValueError):
        generate_data(-1, TRUE_PARAMS, 1.0, 0)


def test_residuals_length_mismatch():
    with pytest.raises(ValueError):
        residuals(TRUE_PARAMS, [0.0, 0.1], [1.0])


def test_residuals_parameter_shape():
    with pytest.raises(ValueError):
        residuals((1.0, 2.0), [0.0], [1.0])


def test_jacobian_matches_finite_differences():
    x, y = generate_data(30, TRUE_PARAMS, 1.0, 3)
    params = np.array([0.7, 1.5, 0.9])
    jac = jacobian(params, x)
    h = 1e-6
    for k in range(3):
        step = np.zeros(3)
        step[k] = h
        numeric = (residuals(params + step, x, y) - residuals(params - step, x, y)) / (2 * h)
        assert np.allclose(jac[:, k], numeric, rtol=1e-5, atol=1e-6)


def test_gauss_newton_recovers_noise_free_parameters():
    x, y = generate_data(100, TRUE_PARAMS, 0.0, 0)
    params, cost = gauss_newton(x, y, (1.1, 1.9, 1.05), 100, 1.0)
    assert np.allclose(params, TRUE_PARAMS, atol=1e-6)
    assert cost < 1e-12


def test_gauss_newton_reduces_cost_on_noisy_data():
    x, y = generate_data(100, TRUE_PARAMS, 1.0, 11)
    initial_cost = float(residuals(INITIAL_PARAMS, x, y) @ residuals(INITIAL_PARAMS, x, y))
    params, cost = gauss_newton(x, y, INITIAL_PARAMS, 100, 1.0)
    assert cost < initial_cost
    assert np.allclose(params, TRUE_PARAMS, atol=0.5)


def test_gauss_newton_zero_iterations_keeps_initial():
    x, y = generate_data(20, TRUE_PARAMS, 0.0, 0)
    params, _ = gauss_newton(x, y, INITIAL_PARAMS, 0, 1.0)
    assert np.allclose(params, INITIAL_PARAMS)


def test_levenberg_marquardt_from_far_start():
    x, y = generate_data(100, TRUE_PARAMS, 0.0, 0)
    params, cost = levenberg_marquardt(x, y, INITIAL_PARAMS, 200)
    assert np.allclose(params, TRUE_PARAMS, atol=1e-4)
    assert cost < 1e-6


def test_levenberg_marquardt_never_increases_cost():
    x, y = generate_data(100, TRUE_PARAMS, 1.0, 5)
    start_cost = float(residuals(INITIAL_PARAMS, x, y) @ residuals(INITIAL_PARAMS, x, y))
    _, cost = levenberg_marquardt(x, y, INITIAL_PARAMS, 3)
    assert cost <= start_cost


def test_main_prints_estimate(capsys):
    assert main(["--method", "levenberg-marquardt", "--iterations", "50"]) == 0
    out = capsys.readouterr().out
    line = next(l for l in out.splitlines() if l.startswith("estimated a,b,c = "))
    values = [float(v) for v in line.split("=")[1].split()]
    assert len(values) == 3
    assert np.allclose(values, TRUE_PARAMS, atol=0.5)