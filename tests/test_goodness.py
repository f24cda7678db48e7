"""
Unit tests for the fiber quality cascade
"""

import pytest
import numpy as np
from muscletract.tractography.goodness import (
    FiberGoodness,
    area_weighted_mean,
    local_consistency_mask,
    monotonic_mask,
    select_fibers
)
from muscletract.tractography.grid import ActiveRegion, GridShapeError, find_active_region
from muscletract.tractography.options import GoodnessOptions


def run_selection(data, config):
    """Run the cascade on a synthetic dataset"""
    return FiberGoodness(config).select(
        data['fiber_all'],
        data['angle_list'],
        data['distance_list'],
        data['curvature_list'],
        data['n_points'],
        data['roi_flag'],
        data['apo_area'],
        data.get('roi_mesh')
    )


class TestActiveRegion:
    """Test bounding box of tracked cells"""

    def test_bounding_box(self):
        """Test minimal box around tracked cells"""
        tracked = np.zeros((6, 7), dtype=bool)
        tracked[2, 3] = True
        tracked[4, 1] = True
        region = find_active_region(tracked)

        assert (region.first_row, region.last_row) == (2, 4)
        assert (region.first_col, region.last_col) == (1, 3)
        assert region.n_cells == 9

    def test_nothing_tracked(self):
        """Test empty grid"""
        assert find_active_region(np.zeros((3, 3), dtype=bool)) is None


class TestMonotonicity:
    """Test monotonic progression layer"""

    @pytest.fixture
    def fibers(self):
        """Three tracts with a backward step at the start, middle and end"""
        fiber_all = np.zeros((1, 3, 10, 3))
        fiber_all[..., 0] = 5
        fiber_all[..., 1] = 5
        fiber_all[..., 2] = np.arange(1, 11)
        fiber_all[0, 0, 1, 2] = 0.5
        fiber_all[0, 1, 5, 2] = 4.5
        fiber_all[0, 2, 9, 2] = 8.5
        return fiber_all

    def test_interior_steps_only(self, fibers):
        """Test that first and last steps are ignored"""
        passed = monotonic_mask(fibers, np.ones((1, 3), dtype=bool))
        np.testing.assert_array_equal(passed, [[True, False, True]])

    def test_candidates_only(self, fibers):
        """Test that cells outside the candidates fail"""
        candidates = np.array([[False, True, True]])
        passed = monotonic_mask(fibers, candidates)
        np.testing.assert_array_equal(passed, [[False, False, True]])


class TestLocalConsistency:
    """Test neighborhood outlier rejection"""

    def test_length_outlier(self):
        """Test that a tract much longer than its neighbors is rejected"""
        layer4 = np.ones((5, 5), dtype=bool)
        angle = np.full((5, 5), 15.0)
        curvature = np.full((5, 5), 10.0)
        length = np.full((5, 5), 40.0)
        length[2, 2] = 80.0

        passed = local_consistency_mask(layer4, angle, curvature, length, ActiveRegion(0, 4, 0, 4))

        expected = np.ones((5, 5), dtype=bool)
        expected[2, 2] = False
        np.testing.assert_array_equal(passed, expected)

    def test_only_layer4_neighbors(self):
        """Test that tracts rejected earlier do not widen the local spread"""
        layer4 = np.zeros((5, 5), dtype=bool)
        layer4[:, :3] = True
        angle = np.full((5, 5), 15.0)
        angle[:, 3:] = 60.0
        angle[2, 2] = 17.0
        curvature = np.full((5, 5), 10.0)
        length = np.full((5, 5), 40.0)

        passed = local_consistency_mask(layer4, angle, curvature, length, ActiveRegion(0, 4, 0, 4))

        expected = layer4.copy()
        expected[2, 2] = False
        np.testing.assert_array_equal(passed, expected)


class TestAreaWeightedMean:
    """Test aponeurosis-area weighting"""

    def test_weighted_length(self):
        """Test 10mm and 20mm tracts weighted 1:3"""
        values = np.array([[10.0, 20.0]])
        area = np.array([[1.0, 3.0]])
        mask = np.array([[True, True]])
        assert area_weighted_mean(values, area, mask) == pytest.approx(17.5)

    def test_nan_and_empty(self):
        """Test NaN handling and empty selection"""
        values = np.array([[np.nan, 20.0]])
        area = np.array([[1.0, 1.0]])
        assert area_weighted_mean(values, area, np.array([[True, True]])) == pytest.approx(10.0)
        assert area_weighted_mean(values, area, np.array([[False, False]])) == 0.0


class TestFiberGoodness:
    """Test the full selection cascade"""

    def test_all_tracts_pass(self, quantified_grid, goodness_config):
        """Test uniform plausible tracts"""
        data = quantified_grid()
        result = run_selection(data, goodness_config)

        np.testing.assert_array_equal(result.num_tracked, [25, 25, 25, 25, 25, 25, 25, 0])
        np.testing.assert_allclose(result.mean_apo_props, [10.0, 15.0, 40.0])
        assert result.n_selected == 25
        np.testing.assert_array_equal(result.final_fibers, data['fiber_all'])

    def test_layers_are_nested(self, quantified_grid, goodness_config):
        """Test that each layer is a subset of the previous one"""
        rng = np.random.default_rng(3)
        data = quantified_grid(n_rows=8, n_cols=8)
        for row in range(8):
            for col in range(8):
                data['angle_list'][row, col] = rng.uniform(1, 50)
                data['curvature_list'][row, col] = rng.uniform(0, 60)
                data['distance_list'][row, col] = np.linspace(0, rng.uniform(5, 60), 10)
                if rng.random() < 0.2:
                    data['fiber_all'][row, col, 4, 2] = 2.5

        result = run_selection(data, goodness_config)

        for layer in range(1, 5):
            below = result.qual_mask[..., layer]
            above = result.qual_mask[..., layer - 1]
            assert not np.any(below & ~above)
        assert np.all(np.diff(result.num_tracked[1:7]) <= 0)

    def test_non_monotonic_rejected(self, quantified_grid, goodness_config):
        """Test that a tract stepping backwards mid-way is rejected"""
        data = quantified_grid()
        data['fiber_all'][2, 2, 5, 2] = 4.5
        result = run_selection(data, goodness_config)

        assert not result.qual_mask[2, 2, 0]
        np.testing.assert_array_equal(result.num_tracked, [25, 25, 24, 24, 24, 24, 24, 0])
        assert np.all(result.final_fibers[2, 2] == 0)
        assert np.all(result.final_angle[2, 2] == 0)

    def test_length_threshold(self, quantified_grid, goodness_config, edit_cell):
        """Test inclusive minimum length"""
        data = quantified_grid()
        edit_cell(data, 0, 0, length=5.0)
        edit_cell(data, 4, 4, length=10.0)
        result = run_selection(data, goodness_config)

        assert result.qual_mask[0, 0, 0] and not result.qual_mask[0, 0, 1]
        assert result.qual_mask[4, 4, 1]

    def test_pennation_bounds_exclusive(self, quantified_grid, goodness_config, edit_cell):
        """Test that angles equal to the bounds are rejected"""
        data = quantified_grid()
        edit_cell(data, 0, 0, angle=5.0)
        edit_cell(data, 0, 1, angle=40.0)
        edit_cell(data, 0, 2, angle=5.5)
        result = run_selection(data, goodness_config)

        assert result.qual_mask[0, 0, 1] and not result.qual_mask[0, 0, 2]
        assert result.qual_mask[0, 1, 1] and not result.qual_mask[0, 1, 2]
        assert result.qual_mask[0, 2, 2]

    def test_curvature_bound_exclusive(self, quantified_grid, goodness_config, edit_cell):
        """Test that curvature equal to the maximum is rejected"""
        data = quantified_grid()
        edit_cell(data, 1, 1, curvature=40.0)
        result = run_selection(data, goodness_config)

        assert result.qual_mask[1, 1, 2] and not result.qual_mask[1, 1, 3]

    def test_neighborhood_outlier(self, quantified_grid, goodness_config, edit_cell):
        """Test layer-5 rejection of a tract unlike its neighbors"""
        data = quantified_grid()
        edit_cell(data, 2, 2, angle=30.0)
        result = run_selection(data, goodness_config)

        assert result.qual_mask[2, 2, 3]
        assert not result.qual_mask[2, 2, 4]
        assert result.num_tracked[6] == 24
        assert result.mean_fiber_props[2, 2, 1] == 0

    def test_weighted_whole_muscle_length(self, quantified_grid, goodness_config, edit_cell):
        """Test area-weighted whole-muscle length"""
        data = quantified_grid(n_rows=1, n_cols=2)
        edit_cell(data, 0, 0, length=10.0)
        edit_cell(data, 0, 1, length=20.0)
        data['apo_area'] = np.array([[1.0, 3.0]])
        config = dict(goodness_config, min_distance=5.0)

        result = run_selection(data, config)

        assert result.n_selected == 2
        assert result.mean_apo_props[2] == pytest.approx(17.5)
        np.testing.assert_array_equal(result.mean_fiber_props[..., 3], data['apo_area'])
        np.testing.assert_allclose(result.mean_fiber_props[0, :, 2], [10.0, 20.0])

    def test_active_region_counts(self, quantified_grid, goodness_config):
        """Test per-stage counts restricted to the active region"""
        data = quantified_grid()
        data['angle_list'][0, :] = 0
        data['angle_list'][:, 0] = 0
        result = run_selection(data, goodness_config)

        assert result.active_region.to_dict() == {
            'first_row': 1, 'last_row': 4, 'first_col': 1, 'last_col': 4
        }
        np.testing.assert_array_equal(result.num_tracked, [16, 16, 16, 16, 16, 16, 16, 0])
        assert not np.any(result.qual_mask[0, :, :])

    def test_nan_curvature(self, quantified_grid, goodness_config):
        """Test that a tract without curvature samples fails and leaves summaries finite"""
        data = quantified_grid()
        data['n_points'][0, 0, 2] = 0
        data['curvature_list'][0, 0] = 0
        result = run_selection(data, goodness_config)

        assert result.qual_mask[0, 0, 2]
        assert not result.qual_mask[0, 0, 3]
        assert np.all(np.isfinite(result.mean_fiber_props))
        assert np.all(np.isfinite(result.mean_apo_props))

    def test_two_dimensional_point_counts(self, quantified_grid, goodness_config):
        """Test n_points given as a single layer"""
        data = quantified_grid()
        data['n_points'] = data['n_points'][..., 0]
        result = run_selection(data, goodness_config)

        np.testing.assert_allclose(result.mean_apo_props, [10.0, 15.0, 40.0])
        np.testing.assert_array_equal(result.mean_fiber_props[..., 4], data['n_points'])

    def test_nothing_tracked(self, quantified_grid, goodness_config):
        """Test empty input"""
        data = quantified_grid()
        data['angle_list'][:] = 0
        result = run_selection(data, goodness_config)

        assert np.all(result.num_tracked == 0)
        np.testing.assert_array_equal(result.mean_apo_props, [0, 0, 0])
        assert np.all(result.final_fibers == 0)
        assert result.active_region is None

    def test_grid_mismatch(self, quantified_grid, goodness_config):
        """Test that arrays over a different grid are rejected"""
        data = quantified_grid()
        data['angle_list'] = data['angle_list'][:4]
        with pytest.raises(GridShapeError):
            run_selection(data, goodness_config)

        data = quantified_grid()
        with pytest.raises(GridShapeError):
            select_fibers(
                data['fiber_all'][..., :2], data['angle_list'], data['distance_list'],
                data['curvature_list'], data['n_points'], data['roi_flag'],
                data['apo_area'], None, goodness_config
            )

    def test_uniform_sampling_layer(self, quantified_grid, goodness_config):
        """Test that sampling keeps one tract per populated region"""
        data = quantified_grid()
        options = GoodnessOptions(**goodness_config, sampling_frequency=5.0, dwi_res=[10, 10, 1])

        with pytest.warns(UserWarning):
            result = run_selection(data, options)

        # Regions are anti-diagonals; only ids 2..6 hold 3 or more tracts
        assert result.sampling.sampling_frequency == pytest.approx(1.0)
        assert result.num_tracked[7] == 5
        expected = [(0, 2), (0, 3), (0, 4), (1, 4), (2, 4)]
        np.testing.assert_array_equal(np.argwhere(result.qual_mask[..., 5]), expected)
        np.testing.assert_allclose(result.mean_apo_props, [10.0, 15.0, 40.0])
        assert np.count_nonzero(np.any(result.final_fibers != 0, axis=(2, 3))) == 5
        assert 'region_ids' in result.to_dict()

    def test_sampling_needs_mesh(self, quantified_grid, goodness_config):
        """Test that uniform sampling without a mesh is rejected"""
        data = quantified_grid()
        data.pop('roi_mesh')
        options = GoodnessOptions(**goodness_config, sampling_frequency=0.5, dwi_res=[10, 10, 1])
        with pytest.raises(GridShapeError):
            run_selection(data, options)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
