"""Fitting y = exp(a*x^2 + b*x + c) to noisy samples by nonlinear least squares."""

from __future__ import annotations

import argparse
import logging
import time

import numpy as np

logger = logging.getLogger(__name__)

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)

_LM_TAU = 1e-5
_LM_MAX_TRIALS = 10
_LM_STEP_TOL = 1e-12


def _params(value) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"expected three parameters (a, b, c), got shape {arr.shape}")
    return arr


def _samples(x, y=None):
    xs = np.asarray(x, dtype=float).reshape(-1)
    if y is None:
        return xs
    ys = np.asarray(y, dtype=float).reshape(-1)
    if xs.shape != ys.shape:
        raise ValueError("x and y must have the same length")
    return xs, ys


def _model(params: np.ndarray, x: np.ndarray) -> np.ndarray:
    a, b, c = params
    with np.errstate(over="ignore"):
        return np.exp(a * x * x + b * x + c)


def generate_data(n=100, true_params=TRUE_PARAMS, sigma=1.0, seed=None):
    """Samples x = i / 100 for i < n with Gaussian noise on y.

    The noise has standard deviation ``sigma ** 2``.
    """
    if n < 0:
        raise ValueError("the number of samples must not be negative")
    params = _params(true_params)
    rng = np.random.default_rng(seed)
    x = np.arange(n, dtype=float) / 100.0
    y = _model(params, x) + rng.normal(0.0, sigma * sigma, size=n)
    return x, y


def residuals(params, x, y) -> np.ndarray:
    """Errors y - exp(a*x^2 + b*x + c) for every sample."""
    xs, ys = _samples(x, y)
    return ys - _model(_params(params), xs)


def jacobian(params, x) -> np.ndarray:
    """Derivatives of the residuals with respect to (a, b, c), one row per sample."""
    xs = _samples(x)
    f = _model(_params(params), xs)
    return np.column_stack([-xs * xs * f, -xs * f, -f])


def _cost(params, x, y) -> float:
    e = residuals(params, x, y)
    return float(e @ e)


def gauss_newton(x, y, initial=INITIAL_PARAMS, iterations=100, inv_sigma=1.0):
    """Gauss-Newton iteration; returns the parameters and their squared-error cost.

    Stops early when the step is not a number or when the cost stops falling.
    """
    xs, ys = _samples(x, y)
    params = _params(initial).copy()
    weight = inv_sigma * inv_sigma
    last_cost = 0.0
    for it in range(iterations):
        e = residuals(params, xs, ys)
        jac = jacobian(params, xs)
        hessian = weight * jac.T @ jac
        bias = -weight * jac.T @ e
        cost = float(e @ e)
        try:
            dx = np.linalg.solve(hessian, bias)
        except np.linalg.LinAlgError:
            dx = np.full(3, np.nan)
        if np.isnan(dx[0]):
            logger.info("result is nan!")
            break
        if it > 0 and cost >= last_cost:
            logger.info("cost: %s>= last cost: %s, break.", cost, last_cost)
            break
        params = params + dx
        last_cost = cost
        logger.info(
            "total cost: %s, update: %s, estimated params: %s,%s,%s",
            cost, dx, *params,
        )
    return params, _cost(params, xs, ys)


def levenberg_marquardt(x, y, initial=INITIAL_PARAMS, iterations=10):
    """Levenberg-Marquardt with an adaptive damping factor.

    Returns the parameters and their squared-error cost.
    """
    xs, ys = _samples(x, y)
    params = _params(initial).copy()

    def linearise(p):
        e = residuals(p, xs, ys)
        jac = jacobian(p, xs)
        return float(e @ e), jac.T @ jac, -jac.T @ e

    cost, hessian, gradient = linearise(params)
    if not np.isfinite(cost):
        raise ValueError("the initial parameters give a non-finite cost")
    damping = _LM_TAU * float(np.max(np.diag(hessian)))
    nu = 2.0
    for it in range(iterations):
        accepted = False
        for _ in range(_LM_MAX_TRIALS):
            try:
                dx = np.linalg.solve(hessian + damping * np.eye(3), gradient)
            except np.linalg.LinAlgError:
                damping *= nu
                nu *= 2.0
                continue
            if np.linalg.norm(dx) <= _LM_STEP_TOL * (np.linalg.norm(params) + _LM_STEP_TOL):
                return params, cost
            candidate = params + dx
            new_cost = _cost(candidate, xs, ys)
            predicted = float(dx @ (damping * dx + gradient))
            if np.isfinite(new_cost) and predicted > 0:
                rho = (cost - new_cost) / predicted
            else:
                rho = -1.0
            if rho > 0:
                params = candidate
                cost, hessian, gradient = linearise(params)
                damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                accepted = True
                logger.info("iteration %d: cost %s, params %s", it, cost, params)
                break
            damping *= nu
            nu *= 2.0
        if not accepted:
            break
    return params, cost


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Fit an exponential curve to noisy samples.")
    parser.add_argument(
        "--method",
        choices=("gauss-newton", "levenberg-marquardt"),
        default="gauss-newton",
    )
    parser.add_argument("--points", type=int, default=100)
    parser.add_argument("--sigma", type=float, default=1.0)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--iterations", type=int, default=None)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    x, y = generate_data(args.points, TRUE_PARAMS, args.sigma, args.seed)
    start = time.perf_counter()
    if args.method == "gauss-newton":
        iterations = 100 if args.iterations is None else args.iterations
        params, cost = gauss_newton(x, y, INITIAL_PARAMS, iterations, 1.0 / args.sigma)
    else:
        iterations = 10 if args.iterations is None else args.iterations
        params, cost = levenberg_marquardt(x, y, INITIAL_PARAMS, iterations)
    elapsed = time.perf_counter() - start
    print(f"solve time cost = {elapsed} seconds. ")
    print(f"final cost = {cost}")
    print("estimated a,b,c = " + " ".join(str(p) for p in params))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())