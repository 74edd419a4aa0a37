"""Run every simulated scenario of an audit document and write the results back.

Usage example
-------------
audit-sim building.xml runs/building \
    --engine-config engine.json \
    --year 2024 \
    --summary-csv runs/summary.csv
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import BASE_WORKFLOW_PATH, BUILDING_TYPES_PATH, MEASURE_TABLE_PATH, load_engine_config
from .dispatch import ScenarioDispatcher, cleanup_large_files, write_workflows
from .errors import Diagnostics, StructuralError
from .facility import ASHRAE90_1, CA_TITLE24, load_building_types, load_document
from .results import gather_results, results_summary, write_summary_csv
from .workflow import WorkflowTemplateStore, measures_exist

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scenario workflow runner for building energy audit documents")
    parser.add_argument("input", type=Path, help="Audit XML document")
    parser.add_argument("output_dir", type=Path, help="Directory holding one run directory per scenario")
    parser.add_argument("--year", type=int, help="Calendar year used for monthly time series")
    parser.add_argument("--engine-config", type=Path, help="JSON file describing the engine command")
    parser.add_argument("--workflow", type=Path, default=BASE_WORKFLOW_PATH)
    parser.add_argument("--measure-table", type=Path, default=MEASURE_TABLE_PATH)
    parser.add_argument("--building-types", type=Path, default=BUILDING_TYPES_PATH)
    parser.add_argument("--standard", choices=[ASHRAE90_1, CA_TITLE24], default=ASHRAE90_1)
    parser.add_argument("--building-type", help="Override the building type derived from the document")
    parser.add_argument("--system-type", help="Override the system type derived from the document")
    parser.add_argument("--template", help="Override the standard template derived from the build year")
    parser.add_argument("--baseline-only", action="store_true", help="Only run the modeled baseline scenario")
    parser.add_argument("--skip-simulation", action="store_true", help="Gather results from existing run directories")
    parser.add_argument("--cleanup", action="store_true", help="Delete large engine outputs after gathering")
    parser.add_argument("--summary-csv", type=Path, help="Append per-scenario results to this CSV")
    parser.add_argument("--overwrite", action="store_true", help="Overwrite existing summary CSV")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.input.exists():
        sys.exit(f"Audit document not found: {args.input}")

    diagnostics = Diagnostics()
    try:
        document = load_document(args.input, diagnostics)
    except StructuralError as exc:
        sys.exit(f"Invalid audit document {args.input}: {exc}")

    engine_config = load_engine_config(args.engine_config)
    store = WorkflowTemplateStore.load(args.workflow, args.measure_table)
    facility = document.facility
    attributes = facility.attributes(
        load_building_types(args.building_types),
        args.standard,
        bldg_type=args.building_type,
        system_type=args.system_type,
        template=args.template,
    )
    print(f"Facility attributes: {attributes.as_dict()}")
    args.output_dir.mkdir(parents=True, exist_ok=True)

    if not args.skip_simulation:
        try:
            written = write_workflows(
                document, store, args.output_dir, attributes, diagnostics,
                engine_config.max_workers, args.baseline_only,
            )
        except StructuralError as exc:
            sys.exit(str(exc))
        if not written:
            print("Some workflows were only partially configured, see log for details", file=sys.stderr)

        scenarios = [facility.cb_modeled] + ([] if args.baseline_only else list(facility.poms))
        for idx, scenario in enumerate(scenarios, start=1):
            if scenario.workflow is not None and not measures_exist(scenario.workflow):
                logger.warning("Scenario %s references modules missing from the measure paths", scenario.get_id())
            print(f"[{idx}/{len(scenarios)}] Queued scenario {scenario.get_id()} in {scenario.run_dir}")
        report = ScenarioDispatcher(engine_config, diagnostics=diagnostics).run_all(scenarios)
        print(f"Simulations finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed")

    failed = gather_results(
        document, args.output_dir, args.year, args.baseline_only, engine_config, diagnostics
    )
    output_path = document.save(args.output_dir / "results.xml")
    print(f"Saved results to {output_path}")

    if args.cleanup:
        for scenario in facility.scenarios:
            if scenario.run_dir is not None and scenario.run_dir.exists():
                cleanup_large_files(scenario.run_dir)

    if args.summary_csv:
        df = write_summary_csv(results_summary(document), args.summary_csv, args.overwrite)
        print(f"Saved {len(df)} records to {args.summary_csv}")

    if failed:
        print(f"Failed scenarios: {', '.join(failed)}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
