"""
Reporting for Fiber Smoothing and Selection

Writes the audit trail of a processing run:
- Polynomial fit residual statistics
- Selection thresholds and tracts remaining after each stage
- Whole-muscle architecture summary
"""

import numpy as np
from typing import Dict, Optional
import logging
from pathlib import Path
import json
from datetime import datetime

from .goodness import GoodnessResult
from .smoother import SmoothingResult

logger = logging.getLogger(__name__)

STAGE_LABELS = [
    'potential_seeds',
    'tracked',
    'monotonic',
    'min_length',
    'pennation_range',
    'max_curvature',
    'neighborhood_consistency',
    'uniform_sampling',
]


class SelectionReport:
    """
    Audit reports for smoothing and selection runs
    """

    def __init__(self, output_dir: str = "analysis_and_decisions/fiber_selection"):
        """
        Initialize report writer

        Args:
            output_dir: Directory for report files
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.report = {
            'timestamp': datetime.now().isoformat(),
            'sections': {}
        }

        logger.info(f"SelectionReport initialized: output_dir={output_dir}")

    def add_smoothing(self, result: SmoothingResult) -> Dict:
        """
        Summarize polynomial fit residuals

        Args:
            result: Output of the smoother

        Returns:
            Residual metrics
        """
        residuals_mm = result.residuals_mm[..., :3]
        valid = ~np.isnan(residuals_mm[..., 0])

        metrics = {
            'n_smoothed': result.n_smoothed,
            'max_points_smoothed': int(np.max(result.n_points_smoothed)) if result.n_points_smoothed.size else 0,
        }
        if result.options is not None:
            metrics['options'] = result.options.to_dict()

        for axis, name in enumerate(('row', 'column', 'slice')):
            values = residuals_mm[..., axis][valid]
            if values.size:
                metrics[f'{name}_rms_residual_mm'] = float(np.sqrt(np.mean(values ** 2)))
                metrics[f'{name}_max_abs_residual_mm'] = float(np.max(np.abs(values)))

        self.report['sections']['smoothing'] = metrics

        logger.info(f"Smoothing summary: {metrics['n_smoothed']} tracts fitted")
        return metrics

    def add_selection(self, result: GoodnessResult) -> Dict:
        """
        Summarize the selection cascade

        Args:
            result: Output of the quality cascade

        Returns:
            Selection metrics
        """
        counts = {label: int(count) for label, count in zip(STAGE_LABELS, result.num_tracked)}

        metrics = {
            'tracts_per_stage': counts,
            'n_selected': result.n_selected,
            'mean_curvature_per_m': float(result.mean_apo_props[0]),
            'mean_pennation_deg': float(result.mean_apo_props[1]),
            'mean_length_mm': float(result.mean_apo_props[2]),
            'active_region': result.active_region.to_dict() if result.active_region else None,
        }
        if result.options is not None:
            metrics['options'] = result.options.to_dict()

        if result.sampling is not None:
            metrics['uniform_sampling'] = {
                'requested_frequency': result.sampling.requested_frequency,
                'sampling_frequency': float(result.sampling.sampling_frequency),
                'clamped': bool(result.sampling.clamped),
                'n_regions': result.sampling.n_regions,
                'n_represented': int(np.sum(result.sampling.represented)),
            }

        self.report['sections']['selection'] = metrics

        logger.info(
            f"Selection summary: {metrics['n_selected']} tracts kept, "
            f"length={metrics['mean_length_mm']:.1f}mm, "
            f"pennation={metrics['mean_pennation_deg']:.1f}deg"
        )
        return metrics

    def save(
        self,
        output_filename: str = "selection_report.json",
        summary_filename: Optional[str] = "selection_summary.txt"
    ) -> Path:
        """
        Write the JSON report and a text summary

        Returns:
            Path of the JSON report
        """
        report_path = self.output_dir / output_filename
        with open(report_path, 'w') as f:
            json.dump(self.report, f, indent=2)

        logger.info(f"Selection report saved to: {report_path}")

        if summary_filename:
            self._write_summary(self.output_dir / summary_filename)

        return report_path

    def _write_summary(self, filepath: Path):
        """Write human-readable summary"""
        sections = self.report['sections']

        with open(filepath, 'w') as f:
            f.write("=" * 70 + "\n")
            f.write("FIBER TRACT SMOOTHING AND SELECTION SUMMARY\n")
            f.write("=" * 70 + "\n\n")
            f.write(f"Timestamp: {self.report['timestamp']}\n\n")

            if 'smoothing' in sections:
                smoothing = sections['smoothing']
                f.write("Smoothing:\n")
                f.write(f"  Tracts fitted: {smoothing['n_smoothed']}\n")
                for name in ('row', 'column', 'slice'):
                    key = f'{name}_rms_residual_mm'
                    if key in smoothing:
                        f.write(f"  RMS {name} residual: {smoothing[key]:.3f} mm\n")
                f.write("\n")

            if 'selection' in sections:
                selection = sections['selection']
                options = selection.get('options', {})
                if options:
                    f.write("Selection criteria:\n")
                    f.write(f"  Minimum length:    {options['min_distance']} mm\n")
                    f.write(f"  Pennation range:   ({options['min_pennation']}, "
                            f"{options['max_pennation']}) deg\n")
                    f.write(f"  Maximum curvature: {options['max_curvature']} m^-1\n\n")

                f.write("Tracts remaining per stage:\n")
                for label, count in selection['tracts_per_stage'].items():
                    f.write(f"  {label:<26} {count}\n")
                f.write("\n")

                if 'uniform_sampling' in selection:
                    sampling = selection['uniform_sampling']
                    clamped = " (clamped)" if sampling['clamped'] else ""
                    f.write(f"Uniform sampling: {sampling['sampling_frequency']:.4g} mm^-1"
                            f"{clamped}, {sampling['n_represented']}/"
                            f"{sampling['n_regions']} regions represented\n\n")

                f.write("Whole-muscle architecture (area weighted):\n")
                f.write(f"  Curvature: {selection['mean_curvature_per_m']:.2f} m^-1\n")
                f.write(f"  Pennation: {selection['mean_pennation_deg']:.2f} deg\n")
                f.write(f"  Length:    {selection['mean_length_mm']:.2f} mm\n")

            f.write("\n" + "=" * 70 + "\n")

        logger.info(f"Summary report saved to: {filepath}")
