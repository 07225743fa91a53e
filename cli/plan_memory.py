#!/usr/bin/env python3
"""
Memory Plan CLI

Computes a static arena layout for the buffers described in a requirements
file (see memplan.planner.requirements_file) and prints, saves or plots it.

Usage:
    # Arena size and per-buffer offsets
    ./cli/plan_memory.py --requirements examples/requirements/conv_chain.json

    # ASCII occupancy chart and full report
    ./cli/plan_memory.py --requirements examples/requirements/conv_chain.json --print-plan --report

    # Save plan as JSON and as a chart
    ./cli/plan_memory.py --requirements examples/requirements/conv_chain.json \\
        --output plan.json --plot plan.png

    # Also write a log file
    ./cli/plan_memory.py --requirements examples/requirements/conv_chain.json --log-dir logs/
"""

import argparse
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from memplan.config import PlannerConfig
from memplan.core.errors import PlannerError
from memplan.logging import create_plan_logger
from memplan.planner.requirements_file import (
    load_requirements,
    planner_from_dict,
    plan_to_dict,
)


def main():
    parser = argparse.ArgumentParser(
        description="Static Memory Planner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        '--requirements', '-r',
        type=Path,
        required=True,
        help="JSON file describing operators and buffers"
    )

    # Output options
    parser.add_argument(
        '--print-plan', '-p',
        action='store_true',
        help="Print the buffer table and per-step occupancy chart"
    )
    parser.add_argument(
        '--report',
        action='store_true',
        help="Print the plan report (savings, reversed operators, overlaps)"
    )
    parser.add_argument(
        '--output', '-o',
        type=Path,
        default=None,
        help="Write the plan as JSON"
    )
    parser.add_argument(
        '--plot',
        type=Path,
        default=None,
        help="Write a time x offset chart (format from the file suffix)"
    )

    # Planner options
    parser.add_argument(
        '--no-reuse',
        action='store_true',
        help="Disable input/output overlap (plain interval packing)"
    )
    parser.add_argument(
        '--line-width',
        type=int,
        default=None,
        help="Columns of the occupancy chart"
    )

    # Logging
    parser.add_argument(
        '--log-dir',
        type=Path,
        default=None,
        help="Directory for the plan log file"
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help="Show debug messages"
    )

    args = parser.parse_args()

    name = args.requirements.stem
    with create_plan_logger(args.log_dir, name, verbose=args.verbose) as log:
        try:
            data = load_requirements(args.requirements)
        except FileNotFoundError:
            log.error(f"Requirements file not found: {args.requirements}")
            return 1
        except PlannerError as e:
            log.error(str(e))
            return 1

        try:
            config_data = dict(data.get('config', {}))
            if args.no_reuse:
                config_data['allow_reuse'] = False
            if args.line_width is not None:
                config_data['line_width'] = args.line_width
            config = PlannerConfig.from_dict(config_data)
        except (TypeError, ValueError) as e:
            log.error(str(e))
            return 1

        # Planner errors are reported to the log by the planner itself
        try:
            planner = planner_from_dict(data, reporter=log, config=config)
            arena_size = planner.get_maximum_memory_size()
        except PlannerError:
            return 1

        log.debug(f"Planned {planner.get_buffer_count()} buffers "
                  f"(capacity {planner.max_buffer_count}) in {planner.plan_count} pass(es)")

        log.section(f"Memory plan: {data.get('name', name)}")
        log.info(f"Arena size: {arena_size} bytes")
        for i in range(planner.get_buffer_count()):
            log.info(f"  buffer {i}: offset {planner.get_offset_for_buffer(i)}")
        reversed_ops = planner.reversed_operators()
        if reversed_ops:
            log.info(f"Reverse-order operators: {', '.join(str(i) for i in reversed_ops)}")

        if args.print_plan:
            log.blank()
            planner.print_memory_plan()

        report = planner.generate_report()
        if args.report:
            log.blank()
            log.info(report.format_report())

        log.summary(
            "Summary",
            buffers=f"{report.buffer_count} (capacity {report.max_buffer_count})",
            without_sharing=f"{report.naive_size_bytes} bytes",
            savings=f"{report.savings_bytes} bytes ({report.savings_ratio * 100:.1f}%)",
            scratch_used=f"{planner.scratch_bytes_used} bytes",
        )

        if report.unsanctioned_overlaps:
            for overlap in report.unsanctioned_overlaps:
                log.warning(overlap.message())

        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            with open(args.output, 'w') as f:
                json.dump(plan_to_dict(planner, name=data.get('name', name)), f, indent=2)
            log.success(f"Plan written to {args.output}")

        if args.plot:
            from memplan.visualization import plot_memory_plan
            path = plot_memory_plan(planner, args.plot, title=data.get('name', name))
            log.success(f"Chart written to {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
