"""Tests for heterogeneity statistics."""

import pytest
from scipy import stats

from metacalc.analysis.heterogeneity import analyze_heterogeneity, interpret_i_squared, subgroup_difference


class TestAnalyzeHeterogeneity:
    """Tests for Q, I² and tau²."""

    def test_known_values(self) -> None:
        """Test effects 0 and 1 with variance 0.1."""
        result = analyze_heterogeneity([0.0, 1.0], [0.1, 0.1])
        assert result.q == pytest.approx(5.0)
        assert result.df == 1
        assert result.q_p_value == pytest.approx(stats.chi2.sf(5.0, 1))
        assert result.i_squared == pytest.approx(80.0)
        assert result.tau_squared == pytest.approx(0.4)
        assert result.interpretation == "considerable"

    def test_no_excess_variation(self) -> None:
        """Test I² = 0 and tau² = 0 when Q <= df."""
        result = analyze_heterogeneity([0.30, 0.32, 0.31], [0.04, 0.05, 0.06])
        assert result.q <= result.df
        assert result.i_squared == 0.0
        assert result.tau_squared == 0.0

    def test_identical_effects(self) -> None:
        """Test that identical effects give Q = 0."""
        result = analyze_heterogeneity([0.5, 0.5], [0.1, 0.2])
        assert result.q == pytest.approx(0.0)
        assert result.i_squared == 0.0

    def test_bounds(self) -> None:
        """Test 0 <= I² <= 100 and tau² >= 0 over very different inputs."""
        cases = [
            ([0.0, 10.0], [0.001, 0.001]),
            ([0.1, 0.2, 0.3], [1.0, 1.0, 1.0]),
            ([-2.0, 0.0, 3.0, 1.0], [0.01, 0.5, 0.2, 0.05]),
        ]
        for effects, variances in cases:
            result = analyze_heterogeneity(effects, variances)
            assert 0.0 <= result.i_squared <= 100.0
            assert result.tau_squared >= 0.0

    def test_single_study(self) -> None:
        """Test that one study has df = 0 and no heterogeneity."""
        result = analyze_heterogeneity([0.4], [0.1])
        assert result.df == 0
        assert result.q_p_value == 1.0
        assert result.i_squared == 0.0

    def test_empty(self) -> None:
        """Test that there is nothing to analyze without effects."""
        with pytest.raises(ValueError):
            analyze_heterogeneity([], [])


class TestInterpretation:
    """Tests for the I² bands."""

    def test_bands(self) -> None:
        """Test each band boundary."""
        assert interpret_i_squared(10.0) == "low"
        assert interpret_i_squared(25.0) == "moderate"
        assert interpret_i_squared(50.0) == "substantial"
        assert interpret_i_squared(75.0) == "considerable"


class TestSubgroupDifference:
    """Tests for the between-subgroup Q test."""

    def test_two_subgroups(self) -> None:
        """Test Q-between for estimates 0 and 1 with SE 1."""
        result = subgroup_difference([0.0, 1.0], [1.0, 1.0])
        assert result.q_between == pytest.approx(0.5)
        assert result.df == 1
        assert result.n_subgroups == 2
        assert result.p_value == pytest.approx(stats.chi2.sf(0.5, 1))

    def test_needs_two_subgroups(self) -> None:
        """Test that one subgroup cannot be compared."""
        with pytest.raises(ValueError):
            subgroup_difference([0.3], [0.1])
