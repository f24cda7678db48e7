"""
MuscleTract Command-Line Interface

Smoothing and quality selection of muscle fiber tracts stored as MATLAB
.mat or NumPy .npz files.
"""

import argparse
import sys
import logging
from datetime import datetime
from pathlib import Path

from .utils.logger import get_logger, log_decision


def main(argv=None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="MuscleTract: smoothing and quality selection of muscle fiber tracts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fit tracts to polynomials of arc length
  muscletract smooth --input fiber_all.mat --config options.json --output smoothed.npz

  # Select plausible tracts after quantification
  muscletract select --input quantified.mat --config options.json --output selected.npz \\
      --report-dir reports/

Configuration files are JSON objects with "smoother" and/or "goodness"
sections, e.g.
  {"dwi_res": [192, 64, 7],
   "smoother": {"interpolation_step": 1, "p_order": [3, 3, 2], "tract_units": "vx"},
   "goodness": {"min_distance": 10, "min_pennation": 0, "max_pennation": 40,
                "max_curvature": 40, "sampling_frequency": 0.25}}
        """
    )

    parser.add_argument('--version', action='version', version='MuscleTract 0.1.0')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--debug', action='store_true', help='Debug mode')
    parser.add_argument('--log-dir', help='Also write a log file to this directory')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Smooth command
    smooth_parser = subparsers.add_parser('smooth', help='Arc-length polynomial smoothing')
    smooth_parser.add_argument('--input', '-i', required=True, help='Tract file (.mat/.npz)')
    smooth_parser.add_argument('--config', '-c', required=True, help='JSON configuration')
    smooth_parser.add_argument('--output', '-o', required=True, help='Output file (.mat/.npz)')
    smooth_parser.add_argument('--fibers', default='fiber_all',
                               help='Name of the tract variable (default: fiber_all)')
    smooth_parser.add_argument('--report-dir', help='Directory for residual reports')
    smooth_parser.add_argument('--progress', action='store_true', help='Show a progress bar')

    # Select command
    select_parser = subparsers.add_parser('select', help='Quality selection of quantified tracts')
    select_parser.add_argument('--input', '-i', required=True,
                               help='File with tracts and quantification arrays (.mat/.npz)')
    select_parser.add_argument('--config', '-c', required=True, help='JSON configuration')
    select_parser.add_argument('--output', '-o', required=True, help='Output file (.mat/.npz)')
    select_parser.add_argument('--fibers', default=None,
                               help='Name of the tract variable (default: smoothed_fiber_all, '
                                    'falling back to fiber_all)')
    select_parser.add_argument('--report-dir', help='Directory for selection reports')
    select_parser.add_argument('--decision-log', help='Markdown file recording the selection criteria')

    args = parser.parse_args(argv)

    # Setup logging
    log_level = logging.DEBUG if args.debug else (logging.INFO if args.verbose else logging.WARNING)
    logger = get_logger(level=log_level, log_dir=args.log_dir)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == 'smooth':
            run_smoothing(args)
        elif args.command == 'select':
            run_selection(args)
        else:
            parser.print_help()
            sys.exit(1)

        logger.info("Command completed successfully")

    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.debug)
        sys.exit(1)


def run_smoothing(args):
    """Run arc-length polynomial smoothing"""
    from .data.loader import load_arrays, save_arrays
    from .tractography.options import load_options
    from .tractography.smoother import FiberSmoother
    from .tractography.quality_report import SelectionReport

    logger = get_logger()
    logger.info("=" * 80)
    logger.info("FIBER TRACT SMOOTHING")
    logger.info("=" * 80)

    options = load_options(args.config, 'smoother')
    arrays = load_arrays(args.input, required=[args.fibers])

    smoother = FiberSmoother(options, show_progress=args.progress)
    result = smoother.smooth(arrays[args.fibers])

    logger.info(f"Smoothed {result.n_smoothed} tracts")
    output_path = save_arrays(args.output, result.to_dict())

    if args.report_dir:
        report = SelectionReport(args.report_dir)
        report.add_smoothing(result)
        report.save(output_filename="smoothing_report.json", summary_filename="smoothing_summary.txt")

    logger.info(f"Results saved to {output_path}")
    return result


def run_selection(args):
    """Run the fiber quality cascade"""
    from .data.loader import DataLoadError, SELECTION_VARIABLES, load_arrays, save_arrays
    from .tractography.options import load_options
    from .tractography.goodness import FiberGoodness
    from .tractography.quality_report import SelectionReport

    logger = get_logger()
    logger.info("=" * 80)
    logger.info("FIBER TRACT SELECTION")
    logger.info("=" * 80)

    options = load_options(args.config, 'goodness')
    arrays = load_arrays(args.input, required=SELECTION_VARIABLES)

    fibers_name = args.fibers
    if fibers_name is None:
        fibers_name = 'smoothed_fiber_all' if 'smoothed_fiber_all' in arrays else 'fiber_all'
    if fibers_name not in arrays:
        raise DataLoadError(f"{args.input} has no tract variable '{fibers_name}'")

    if options.uniform_sampling and 'roi_mesh' not in arrays:
        raise DataLoadError(f"{args.input} has no 'roi_mesh'; required for uniform sampling")

    logger.info(f"Selecting from '{fibers_name}'")
    selector = FiberGoodness(options)
    result = selector.select(
        arrays[fibers_name],
        arrays['angle_list'],
        arrays['distance_list'],
        arrays['curvature_list'],
        arrays['n_points'],
        arrays['roi_flag'],
        arrays['apo_area'],
        arrays.get('roi_mesh')
    )

    output_path = save_arrays(args.output, result.to_dict())

    if args.report_dir:
        report = SelectionReport(args.report_dir)
        report.add_selection(result)
        report.save()

    if args.decision_log:
        parameters = options.to_dict()
        parameters['tracts_per_stage'] = result.num_tracked.tolist()
        if result.sampling is not None:
            parameters['effective_sampling_frequency'] = result.sampling.sampling_frequency
        log_decision(
            decision_id=f"SELECTION-{Path(args.input).stem}-{datetime.now().strftime('%Y%m%d_%H%M%S')}",
            component="fiber_selection",
            decision=f"Kept {result.n_selected} fiber tracts from {Path(args.input).name}",
            rationale="Tracts rejected for non-monotonic progression, short length, out-of-range "
                      "pennation, excess curvature or disagreement with neighboring tracts",
            parameters=parameters,
            output_file=args.decision_log
        )

    logger.info(
        f"Whole-muscle means: curvature={result.mean_apo_props[0]:.2f}/m, "
        f"pennation={result.mean_apo_props[1]:.2f}deg, length={result.mean_apo_props[2]:.2f}mm"
    )
    logger.info(f"Results saved to {output_path}")
    return result


if __name__ == '__main__':
    main()
