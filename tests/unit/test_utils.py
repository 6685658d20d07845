"""Unit tests for utils module."""

import numpy as np
import pytest
from scipy.stats import spearmanr

from cytotraj.utils import (
    natural_sort_key,
    natural_sorted,
    scale_to_max,
    stage_concordance,
    standardize_columns,
)


class TestNaturalSort:
    """Tests for label ordering helpers."""

    def test_numeric_labels_in_numeric_order(self):
        assert natural_sorted(["10", "2", "1"]) == ["1", "2", "10"]

    def test_numbers_before_text(self):
        assert natural_sorted(["b", "3", "a", "12"]) == ["3", "12", "a", "b"]

    def test_accepts_non_string_labels(self):
        """Integer labels are returned as strings."""
        assert natural_sorted([3, 1, 2]) == ["1", "2", "3"]

    def test_sort_key_shape(self):
        assert natural_sort_key("7") == (0, 7, "")
        assert natural_sort_key("x7") == (1, 0, "x7")


class TestScaleToMax:
    """Tests for scale_to_max."""

    def test_max_becomes_one(self):
        result = scale_to_max([0.0, 2.0, 4.0])
        np.testing.assert_allclose(result, [0.0, 0.5, 1.0])

    def test_non_finite_become_nan(self):
        """Infinite and NaN inputs do not affect the scale."""
        result = scale_to_max([1.0, np.inf, np.nan, 2.0])
        assert result[0] == pytest.approx(0.5)
        assert np.isnan(result[1])
        assert np.isnan(result[2])
        assert result[3] == pytest.approx(1.0)

    def test_all_zero_unchanged(self):
        np.testing.assert_array_equal(scale_to_max([0.0, 0.0]), [0.0, 0.0])

    def test_empty(self):
        assert scale_to_max([]).size == 0


class TestStandardizeColumns:
    """Tests for standardize_columns."""

    def test_zero_mean_unit_std(self):
        rng = np.random.default_rng(0)
        z = standardize_columns(rng.normal(5, 3, size=(200, 3)))
        np.testing.assert_allclose(z.mean(axis=0), 0.0, atol=1e-10)
        np.testing.assert_allclose(z.std(axis=0), 1.0, atol=1e-10)

    def test_constant_column_is_zero(self):
        matrix = np.column_stack([np.arange(5.0), np.full(5, 3.0)])
        z = standardize_columns(matrix)
        np.testing.assert_array_equal(z[:, 1], 0.0)

    def test_clip(self):
        matrix = np.array([[0.0], [0.0], [0.0], [0.0], [100.0]])
        z = standardize_columns(matrix, clip=1.5)
        assert z.max() == pytest.approx(1.5)


class TestStageConcordance:
    """Tests for stage_concordance."""

    def test_perfect_agreement(self):
        rho = stage_concordance([0.0, 0.1, 0.5, 0.9], ["D0", "D2", "D4", "D6"], ["D0", "D2", "D4", "D6"])
        assert rho == pytest.approx(1.0)

    def test_tied_stages_match_spearman(self):
        pseudotime = [0.0, 0.1, 0.5, 0.9]
        stages = ["D0", "D0", "D2", "D4"]
        rho = stage_concordance(pseudotime, stages, ["D0", "D2", "D4"])
        assert rho == pytest.approx(spearmanr(pseudotime, [0, 0, 1, 2])[0])

    def test_reversed_order(self):
        rho = stage_concordance([0.0, 0.5, 1.0], ["D0", "D2", "D4"], ["D4", "D2", "D0"])
        assert rho == pytest.approx(-1.0)

    def test_unknown_stage_and_nan_ignored(self):
        rho = stage_concordance(
            [0.0, np.nan, 0.5, 1.0, 0.2],
            ["D0", "D2", "D2", "D4", "other"],
            ["D0", "D2", "D4"],
        )
        assert rho == pytest.approx(1.0)

    def test_single_stage_is_nan(self):
        assert np.isnan(stage_concordance([0.1, 0.2], ["D0", "D0"], ["D0", "D2"]))

    def test_too_few_cells_is_nan(self):
        assert np.isnan(stage_concordance([0.1], ["D0"], ["D0", "D2"]))
