import numpy as np
import pytest

from nparc.processing.sigmoid import (
    DEFAULT_START,
    LOWER_BOUNDS,
    UPPER_BOUNDS,
    FitFailure,
    SigmoidFitConfig,
    SigmoidParams,
    fit_sigmoid,
    fit_sigmoid_with_retry,
    get_aumc,
    get_melting_point,
    make_group_rng,
    melting_curve,
    melting_curve_jacobian,
    perturb_start,
)


class TestMeltingCurve:
    def test_limits(self) -> None:
        """Test that the curve starts near 1 and ends near the plateau."""
        y = melting_curve(np.array([1.0, 1000.0]), 0.1, 1000.0, 20.0)
        assert y[0] == pytest.approx(1.0)
        assert y[1] == pytest.approx(0.1, abs=1e-6)

    def test_jacobian_matches_finite_differences(self) -> None:
        """Test the analytic Jacobian against central differences."""
        t = np.array([40.0, 50.0, 60.0])
        params = np.array([0.1, 1000.0, 20.0])
        jac = melting_curve_jacobian(t, *params)

        for i, step in enumerate([1e-6, 1e-3, 1e-6]):
            delta = np.zeros(3)
            delta[i] = step
            upper = melting_curve(t, *(params + delta))
            lower = melting_curve(t, *(params - delta))
            numeric = (upper - lower) / (2 * step)
            np.testing.assert_allclose(jac[:, i], numeric, rtol=1e-5, atol=1e-8)


class TestMeltingPoint:
    def test_melting_point_is_half_height(self) -> None:
        """Test that the curve equals 0.5 at the melting point."""
        params = SigmoidParams(plateau=0.05, a=1000.0, b=20.0)
        tm = get_melting_point(params)

        assert float(melting_curve(tm, params.plateau, params.a, params.b)) == pytest.approx(0.5)

    def test_high_plateau_has_no_melting_point(self) -> None:
        """Test that curves that never reach 0.5 have no melting point."""
        assert np.isnan(get_melting_point(SigmoidParams(plateau=0.6, a=1000.0, b=20.0)))

    def test_aumc_between_bounds(self) -> None:
        """Test that the area under the curve lies between plateau and full height."""
        params = SigmoidParams(plateau=0.05, a=1000.0, b=20.0)
        area = get_aumc(params, 37.0, 67.0)
        assert 0.05 * 30 < area < 30


class TestSigmoidFitConfig:
    def test_defaults(self) -> None:
        """Test the default starting values and bounds."""
        config = SigmoidFitConfig()
        assert config.start == DEFAULT_START
        assert config.max_iterations == 50
        assert config.max_attempts == 100

    def test_start_outside_bounds(self) -> None:
        """Test that starting values outside the bounds are rejected."""
        with pytest.raises(ValueError):
            SigmoidFitConfig(start=(2.0, 550.0, 10.0))

    def test_inverted_bounds(self) -> None:
        """Test that lower bounds above upper bounds are rejected."""
        with pytest.raises(ValueError):
            SigmoidFitConfig(lower=(1.0, 1e-5, 1e-5), upper=(0.5, 15000.0, 250.0))

    def test_invalid_attempts(self) -> None:
        """Test that the attempt budget must be positive."""
        with pytest.raises(ValueError):
            SigmoidFitConfig(max_attempts=0)


class TestFitSigmoid:
    def test_recovers_parameters(self, sample_temperatures, sample_curve) -> None:
        """Test that a clean curve is fitted closely."""
        result = fit_sigmoid_with_retry(
            sample_temperatures, sample_curve, rng=np.random.default_rng(0)
        )
        params = result.params

        assert get_melting_point(params) == pytest.approx(50.0, abs=0.5)
        assert params.plateau == pytest.approx(0.05, abs=0.03)

    def test_parameters_within_bounds(self, sample_temperatures) -> None:
        """Test that a curve falling below zero is fitted with the plateau at its bound."""
        y = melting_curve(sample_temperatures, 0.0, 1000.0, 20.0) - 0.2
        result = fit_sigmoid_with_retry(sample_temperatures, y, rng=np.random.default_rng(0))

        assert result.converged
        values = result.params.as_array()
        assert np.all(values >= np.array(LOWER_BOUNDS))
        assert np.all(values <= np.array(UPPER_BOUNDS))
        assert result.params.plateau == pytest.approx(0.0, abs=1e-3)

    def test_too_few_points(self) -> None:
        """Test that fewer observations than parameters raise FitFailure."""
        with pytest.raises(FitFailure):
            fit_sigmoid(np.array([40.0, 50.0, 60.0]), np.array([1.0, np.nan, 0.1]), DEFAULT_START)

    def test_missing_values_are_ignored(self, sample_temperatures, sample_curve) -> None:
        """Test that missing values do not enter the fit."""
        y = sample_curve.copy()
        y[3] = np.nan

        result = fit_sigmoid_with_retry(sample_temperatures, y, rng=np.random.default_rng(0))

        assert result.converged
        assert result.n_fitted == len(y) - 1
        assert np.isnan(result.residuals[3])
        assert result.rss == pytest.approx(np.nansum(result.residuals**2))


class TestFitSigmoidWithRetry:
    def test_converges(self, sample_temperatures, sample_curve) -> None:
        """Test that a clean curve converges and reports its residual spread."""
        result = fit_sigmoid_with_retry(
            sample_temperatures, sample_curve, rng=np.random.default_rng(0)
        )

        assert result.converged
        assert 1 <= result.attempts <= SigmoidFitConfig().max_attempts
        assert result.resid_sd == pytest.approx(
            np.sqrt(result.rss / (len(sample_curve) - 3))
        )

    def test_retry_budget_is_respected(self, mocker, sample_temperatures, sample_curve) -> None:
        """Test that the loop stops after max_attempts when every attempt fails."""
        mock_fit = mocker.patch(
            "nparc.processing.sigmoid.fit_sigmoid", side_effect=FitFailure("no convergence")
        )
        config = SigmoidFitConfig(max_attempts=7)

        result = fit_sigmoid_with_retry(
            sample_temperatures, sample_curve, config, rng=np.random.default_rng(0)
        )

        assert mock_fit.call_count == 7
        assert not result.converged
        assert result.attempts == 7
        assert result.params is None
        assert np.isnan(result.rss)
        assert np.all(np.isnan(result.residuals))

    def test_retry_starts_stay_near_configured_start(
        self, mocker, sample_temperatures, sample_curve
    ) -> None:
        """Test that every retry rescales the configured start rather than the previous one."""
        mock_fit = mocker.patch(
            "nparc.processing.sigmoid.fit_sigmoid", side_effect=FitFailure("no convergence")
        )

        fit_sigmoid_with_retry(sample_temperatures, sample_curve, rng=np.random.default_rng(0))

        starts = np.array([call.args[2] for call in mock_fit.call_args_list])
        assert len(starts) == SigmoidFitConfig().max_attempts
        factors = starts[:, 1:] / np.array(DEFAULT_START[1:])
        assert np.all(factors >= 0.5)
        assert np.all(factors <= 1.5)
        np.testing.assert_allclose(factors[:, 0], factors[:, 1])

    def test_non_convergent_data_exhausts_budget(self, sample_temperatures) -> None:
        """Test that a fit that can never converge stops after max_attempts."""
        rng = np.random.default_rng(3)
        y = 0.5 + rng.normal(0, 0.2, len(sample_temperatures))
        config = SigmoidFitConfig(max_iterations=1, max_attempts=5)

        result = fit_sigmoid_with_retry(sample_temperatures, y, config, rng=rng)

        assert not result.converged
        assert result.attempts == 5
        assert result.n_fitted == 0

    def test_retries_from_perturbed_start(
        self, mocker, sample_temperatures, sample_curve
    ) -> None:
        """Test that retries start from rescaled values within the bounds."""
        mock_fit = mocker.patch(
            "nparc.processing.sigmoid.fit_sigmoid",
            side_effect=[FitFailure("1"), FitFailure("2"), SigmoidParams(0.05, 1000.0, 20.0)],
        )

        result = fit_sigmoid_with_retry(
            sample_temperatures, sample_curve, rng=np.random.default_rng(0)
        )

        assert result.converged
        assert result.attempts == 3
        starts = [call.args[2] for call in mock_fit.call_args_list]
        np.testing.assert_array_equal(starts[0], DEFAULT_START)
        assert not np.array_equal(starts[1], starts[0])
        for start in starts:
            assert np.all(start >= np.array(LOWER_BOUNDS))
            assert np.all(start <= np.array(UPPER_BOUNDS))

    def test_always_permute(self, mocker, sample_temperatures, sample_curve) -> None:
        """Test that the first attempt is perturbed when always_permute is set."""
        mock_fit = mocker.patch(
            "nparc.processing.sigmoid.fit_sigmoid",
            return_value=SigmoidParams(0.05, 1000.0, 20.0),
        )

        fit_sigmoid_with_retry(
            sample_temperatures, sample_curve, rng=np.random.default_rng(0), always_permute=True
        )

        assert not np.array_equal(mock_fit.call_args.args[2], DEFAULT_START)

    def test_too_few_points_makes_no_attempt(self) -> None:
        """Test that curves with fewer than three points are reported without fitting."""
        result = fit_sigmoid_with_retry(np.array([40.0, 50.0]), np.array([1.0, 0.5]))

        assert not result.converged
        assert result.attempts == 0
        assert result.n_fitted == 0

    def test_length_mismatch(self) -> None:
        """Test that inputs of different lengths are rejected."""
        with pytest.raises(ValueError):
            fit_sigmoid_with_retry(np.array([40.0, 50.0, 60.0]), np.array([1.0, 0.5]))


class TestRandomState:
    def test_perturb_start_clips_to_bounds(self) -> None:
        """Test that perturbed starting values never leave the bounds."""
        config = SigmoidFitConfig()
        rng = np.random.default_rng(0)
        start = np.array(UPPER_BOUNDS)
        for _ in range(20):
            start = perturb_start(start, rng, config)
            assert np.all(start <= np.array(UPPER_BOUNDS))
            assert np.all(start >= np.array(LOWER_BOUNDS))

    def test_group_rng_is_reproducible(self) -> None:
        """Test that the same seed and keys give the same random stream."""
        first = make_group_rng(42, "ds1", "P1").uniform(size=3)
        second = make_group_rng(42, "ds1", "P1").uniform(size=3)
        other = make_group_rng(42, "ds1", "P2").uniform(size=3)

        np.testing.assert_array_equal(first, second)
        assert not np.array_equal(first, other)

    def test_group_rng_rejects_negative_seed(self) -> None:
        """Test that negative seeds are rejected."""
        with pytest.raises(ValueError):
            make_group_rng(-1, "ds1")
