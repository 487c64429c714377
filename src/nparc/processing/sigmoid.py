"""Three-parameter melting curve fitting with bounded random restarts.

The melting curve of a protein is modelled as

    y(T) = (1 - plateau) / (1 + exp(b - a / T)) + plateau

where ``plateau`` is the lower asymptote of the relative abundance, ``a`` scales the
temperature dependence and ``b`` is the offset of the exponent. The curve starts at 1 for
low temperatures and falls to ``plateau`` for high temperatures.

Fits are bounded nonlinear least squares (scipy's trust-region reflective solver) capped at a
fixed number of iterations. A fit that fails is retried from a randomly rescaled starting
point until one converges or the attempt budget is spent. The random state is passed in
explicitly so that repeated runs with the same seed find the same optimum.

References:
    Childs et al. 2019, Mol Cell Proteomics 18(12), 2506-2515. doi:10.1074/mcp.TIR119.001481
    Savitski et al. 2014, Science 346(6205), 1255784. doi:10.1126/science.1255784
"""

import logging
import zlib
from dataclasses import dataclass

import numpy as np
from scipy import integrate
from scipy.optimize import least_squares
from scipy.special import expit

from nparc.utils.validation import validate_positive_int

logger = logging.getLogger(__name__)

# Starting values used for every protein. a / b = 55 puts the initial melting point in the
# middle of a typical 37-67 °C TPP temperature range.
DEFAULT_START = (0.0, 550.0, 10.0)
LOWER_BOUNDS = (0.0, 1e-5, 1e-5)
UPPER_BOUNDS = (1.5, 15000.0, 250.0)

N_COEFFS = 3
PERTURBATION_RANGE = (0.5, 1.5)


class FitFailure(RuntimeError):
    """A single least-squares fit did not produce usable parameters."""


@dataclass(frozen=True)
class SigmoidParams:
    """Fitted melting curve parameters."""

    plateau: float
    a: float
    b: float

    def as_array(self) -> np.ndarray:
        return np.array([self.plateau, self.a, self.b], dtype=float)

    @classmethod
    def from_array(cls, values: np.ndarray) -> "SigmoidParams":
        plateau, a, b = (float(v) for v in values)
        return cls(plateau=plateau, a=a, b=b)


@dataclass(frozen=True)
class SigmoidFitConfig:
    """Settings for fitting a single melting curve.

    Attributes:
        start: Starting values for (plateau, a, b).
        lower: Lower bounds for (plateau, a, b).
        upper: Upper bounds for (plateau, a, b).
        max_iterations: Maximum number of solver iterations (function evaluations) per
            attempt.
        max_attempts: Maximum number of attempts, including the first, before a fit is
            reported as not converged.
        always_permute: Rescale the starting values before the first attempt as well.
    """

    start: tuple[float, float, float] = DEFAULT_START
    lower: tuple[float, float, float] = LOWER_BOUNDS
    upper: tuple[float, float, float] = UPPER_BOUNDS
    max_iterations: int = 50
    max_attempts: int = 100
    always_permute: bool = False

    def __post_init__(self) -> None:
        for name in ("start", "lower", "upper"):
            if len(getattr(self, name)) != N_COEFFS:
                raise ValueError(f"{name} must have {N_COEFFS} values")
        lower = np.asarray(self.lower, dtype=float)
        upper = np.asarray(self.upper, dtype=float)
        start = np.asarray(self.start, dtype=float)
        if np.any(lower >= upper):
            raise ValueError("lower bounds must be smaller than upper bounds")
        if np.any(start < lower) or np.any(start > upper):
            raise ValueError("start values must lie within the bounds")
        validate_positive_int(self.max_iterations, "max_iterations")
        validate_positive_int(self.max_attempts, "max_attempts")


@dataclass(frozen=True)
class FitResult:
    """Outcome of fitting one melting curve, including all retries.

    Attributes:
        converged: Whether any attempt converged.
        params: Fitted parameters, None if not converged.
        residuals: Observed minus fitted value for every input point. NaN for missing
            observations and for every point of a fit that did not converge.
        rss: Residual sum of squares over the non-missing residuals. NaN if not converged.
        n_fitted: Number of non-missing residuals.
        attempts: Number of fit attempts consumed.
        n_coeffs: Number of model parameters.
    """

    converged: bool
    params: SigmoidParams | None
    residuals: np.ndarray
    rss: float
    n_fitted: int
    attempts: int
    n_coeffs: int = N_COEFFS

    @property
    def melting_point(self) -> float:
        if self.params is None:
            return np.nan
        return get_melting_point(self.params)

    @property
    def resid_sd(self) -> float:
        dof = self.n_fitted - self.n_coeffs
        if not self.converged or dof <= 0:
            return np.nan
        return float(np.sqrt(self.rss / dof))


def melting_curve(
    temperature: np.ndarray | float, plateau: float, a: float, b: float
) -> np.ndarray:
    """Evaluate the melting curve at the given temperatures."""
    t = np.asarray(temperature, dtype=float)
    return (1 - plateau) * expit(a / t - b) + plateau


def melting_curve_jacobian(
    temperature: np.ndarray, plateau: float, a: float, b: float
) -> np.ndarray:
    """Partial derivatives of the melting curve with respect to (plateau, a, b)."""
    t = np.asarray(temperature, dtype=float)
    s = expit(b - a / t)
    # d/dz of 1 / (1 + exp(z)) is -s * (1 - s)
    ds = s * (1 - s)

    return np.column_stack(
        [
            s,
            (1 - plateau) * ds / t,
            -(1 - plateau) * ds,
        ]
    )


def get_melting_point(params: SigmoidParams) -> float:
    """Temperature at which the fitted curve crosses a relative abundance of 0.5.

    Returns NaN when the curve never reaches 0.5, i.e. when the plateau is 0.5 or higher.
    """
    if params.plateau >= 0.5:
        return np.nan
    denominator = params.b - np.log((1 - params.plateau) / (0.5 - params.plateau) - 1)
    if denominator <= 0:
        return np.nan
    return float(params.a / denominator)


def get_aumc(params: SigmoidParams, t_min: float, t_max: float) -> float:
    """Area under the fitted melting curve between t_min and t_max."""
    area, _ = integrate.quad(
        lambda t: float(melting_curve(t, params.plateau, params.a, params.b)), t_min, t_max
    )
    return float(area)


def make_group_rng(seed: int | None, *keys: object) -> np.random.Generator:
    """Random generator for one group of fits, e.g. one protein in one dataset.

    With a seed, the generator depends only on the seed and the keys, so results do not
    change with the order in which groups are processed or with the number of workers.
    """
    if seed is None:
        return np.random.default_rng()
    seed = validate_positive_int(seed, "seed", allow_zero=True)
    key = "\x1f".join(str(k) for k in keys)
    return np.random.default_rng([seed, zlib.crc32(key.encode("utf-8"))])


def perturb_start(
    start: np.ndarray, rng: np.random.Generator, config: SigmoidFitConfig
) -> np.ndarray:
    """Rescale all starting values by one common random factor, clipped to the bounds."""
    factor = rng.uniform(*PERTURBATION_RANGE)
    return np.clip(np.asarray(start, dtype=float) * factor, config.lower, config.upper)


def fit_sigmoid(
    temperature: np.ndarray,
    rel_abundance: np.ndarray,
    start: np.ndarray | tuple[float, float, float],
    config: SigmoidFitConfig | None = None,
) -> SigmoidParams:
    """Fit the melting curve once.

    Args:
        temperature: Temperatures in °C.
        rel_abundance: Relative abundances, same length as temperature. Missing values
            (NaN) are left out of the fit.
        start: Starting values for (plateau, a, b).
        config: Bounds and iteration cap. Uses defaults if None.

    Returns:
        SigmoidParams within the configured bounds.

    Raises:
        FitFailure: If there are fewer points than parameters, the solver raises a numerical
            error or it stops without converging.
    """
    if config is None:
        config = SigmoidFitConfig()

    t = np.asarray(temperature, dtype=float)
    y = np.asarray(rel_abundance, dtype=float)
    mask = np.isfinite(t) & np.isfinite(y)
    if mask.sum() < N_COEFFS:
        raise FitFailure(f"need at least {N_COEFFS} observations, got {int(mask.sum())}")
    t, y = t[mask], y[mask]

    x0 = np.clip(np.asarray(start, dtype=float), config.lower, config.upper)

    try:
        result = least_squares(
            lambda p: melting_curve(t, *p) - y,
            x0,
            jac=lambda p: melting_curve_jacobian(t, *p),
            bounds=(config.lower, config.upper),
            method="trf",
            # a and b differ by orders of magnitude
            x_scale="jac",
            max_nfev=config.max_iterations,
        )
    except (ValueError, FloatingPointError, np.linalg.LinAlgError) as e:
        raise FitFailure(str(e)) from e

    if not result.success or not np.all(np.isfinite(result.x)):
        raise FitFailure(result.message)

    return SigmoidParams.from_array(result.x)


def _converged_result(
    t: np.ndarray, y: np.ndarray, params: SigmoidParams, attempts: int
) -> FitResult:
    residuals = y - melting_curve(t, params.plateau, params.a, params.b)
    residuals[~np.isfinite(y)] = np.nan
    n_fitted = int(np.isfinite(residuals).sum())

    return FitResult(
        converged=True,
        params=params,
        residuals=residuals,
        rss=float(np.nansum(residuals**2)),
        n_fitted=n_fitted,
        attempts=attempts,
    )


def _failed_result(n_points: int, attempts: int) -> FitResult:
    return FitResult(
        converged=False,
        params=None,
        residuals=np.full(n_points, np.nan),
        rss=np.nan,
        n_fitted=0,
        attempts=attempts,
    )


def fit_sigmoid_with_retry(
    temperature: np.ndarray,
    rel_abundance: np.ndarray,
    config: SigmoidFitConfig | None = None,
    rng: np.random.Generator | None = None,
    always_permute: bool | None = None,
) -> FitResult:
    """Fit the melting curve, restarting from rescaled starting values after each failure.

    Every retry multiplies the configured starting values by a fresh factor drawn uniformly
    from [0.5, 1.5]. The first attempt uses the configured start unless always_permute is
    set. At most ``config.max_attempts`` attempts are made.

    Args:
        temperature: Temperatures in °C.
        rel_abundance: Relative abundances; NaN marks a missing value.
        config: Fit settings. Uses defaults if None.
        rng: Source of the rescaling factors. A fresh unseeded generator if None.
        always_permute: Overrides ``config.always_permute`` when given.

    Returns:
        FitResult. A fit that never converges is returned with ``converged=False`` rather
        than raised.
    """
    if config is None:
        config = SigmoidFitConfig()
    if rng is None:
        rng = np.random.default_rng()
    if always_permute is None:
        always_permute = config.always_permute

    t = np.asarray(temperature, dtype=float)
    y = np.asarray(rel_abundance, dtype=float)
    if t.shape != y.shape:
        raise ValueError("temperature and rel_abundance must have the same length")

    if (np.isfinite(t) & np.isfinite(y)).sum() < N_COEFFS:
        logger.debug("Skipping fit with fewer than %d observations", N_COEFFS)
        return _failed_result(len(y), attempts=0)

    initial_start = np.asarray(config.start, dtype=float)
    for attempt in range(1, config.max_attempts + 1):
        start = initial_start
        if attempt > 1 or always_permute:
            start = perturb_start(initial_start, rng, config)
        try:
            params = fit_sigmoid(t, y, start, config)
        except FitFailure as e:
            logger.debug("Fit attempt %d failed: %s", attempt, e)
            continue
        return _converged_result(t, y, params, attempt)

    logger.debug("No fit converged within %d attempts", config.max_attempts)
    return _failed_result(len(y), attempts=config.max_attempts)
