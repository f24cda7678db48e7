"""
Tests for the command-line interface
"""

import json

import pytest
import numpy as np
from muscletract.cli import main
from muscletract.data.loader import load_arrays, save_arrays


class TestCLI:
    """Test smooth and select commands end to end"""

    @pytest.fixture
    def config_path(self, tmp_path):
        """Configuration with both sections"""
        path = tmp_path / "options.json"
        path.write_text(json.dumps({
            'dwi_res': [10, 10, 1],
            'smoother': {'interpolation_step': 1, 'p_order': [2, 2, 2], 'tract_units': 'vx'},
            'goodness': {'min_distance': 5, 'min_pennation': 5, 'max_pennation': 40,
                         'max_curvature': 40},
        }))
        return path

    def test_smooth(self, tmp_path, config_path, quantified_grid):
        """Test the smooth command"""
        data = quantified_grid()
        input_path = save_arrays(tmp_path / "tracts.npz", {'fiber_all': data['fiber_all']})
        output_path = tmp_path / "smoothed.npz"

        main(['smooth', '-i', str(input_path), '-c', str(config_path), '-o', str(output_path),
              '--report-dir', str(tmp_path / "reports")])

        smoothed = load_arrays(output_path)
        np.testing.assert_allclose(smoothed['smoothed_fiber_all'], data['fiber_all'], atol=1e-8)
        assert np.all(smoothed['n_points_smoothed'] == 10)
        assert (tmp_path / "reports" / "smoothing_report.json").exists()

    def test_select(self, tmp_path, config_path, quantified_grid):
        """Test the select command with reports and decision log"""
        data = quantified_grid()
        input_path = save_arrays(tmp_path / "quantified.mat", data)
        output_path = tmp_path / "selected.npz"
        decision_log = tmp_path / "decisions.md"

        main(['select', '-i', str(input_path), '-c', str(config_path), '-o', str(output_path),
              '--report-dir', str(tmp_path / "reports"), '--decision-log', str(decision_log)])

        selected = load_arrays(output_path)
        np.testing.assert_array_equal(selected['num_tracked'], [25, 25, 25, 25, 25, 25, 25, 0])
        np.testing.assert_allclose(selected['mean_apo_props'], [10.0, 15.0, 40.0])

        with open(tmp_path / "reports" / "selection_report.json") as f:
            report = json.load(f)
        assert report['sections']['selection']['n_selected'] == 25
        assert (tmp_path / "reports" / "selection_summary.txt").exists()
        assert "fiber_selection" in decision_log.read_text()

    def test_missing_input_exits(self, tmp_path, config_path):
        """Test that errors exit with status 1"""
        with pytest.raises(SystemExit) as excinfo:
            main(['select', '-i', str(tmp_path / "absent.npz"), '-c', str(config_path),
                  '-o', str(tmp_path / "out.npz")])
        assert excinfo.value.code == 1

    def test_no_command(self):
        """Test that a missing subcommand prints help and exits"""
        with pytest.raises(SystemExit):
            main([])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
