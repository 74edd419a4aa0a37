"""Per-scenario run directories, engine invocation and run success checks."""

from __future__ import annotations

import json
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from .assembler import configure_workflows
from .config import (
    LARGE_OUTPUT_FILES,
    OUT_DESCRIPTOR_FILENAME,
    WORKFLOW_FILENAME,
    EngineConfig,
)
from .errors import Diagnostics, StructuralError
from .facility import AuditDocument, FacilityAttributes
from .scenario import Scenario
from .workflow import WorkflowTemplateStore

logger = logging.getLogger(__name__)

EngineRunner = Callable[[List[str], Path, Path, Optional[float]], None]


def sanitize_name(value: str) -> str:
    return "".join(ch if ch.isalnum() or ch in ("_", "-") else "_" for ch in value)


def scenario_run_dir(main_output_dir: Path, scenario: Scenario, taken: Optional[Set[Path]] = None) -> Path:
    """Run directory named after the scenario, or its ID when the name is missing or already taken.

    ``taken`` collects the directories handed out so far in one batch.
    """
    run_dir = main_output_dir / sanitize_name(scenario.get_name() or scenario.get_id())
    if taken is not None:
        if run_dir in taken:
            fallback = main_output_dir / sanitize_name(scenario.get_id())
            index = 2
            while fallback in taken:
                fallback = main_output_dir / f"{sanitize_name(scenario.get_id())}_{index}"
                index += 1
            logger.warning(
                "Run directory %s is already used by another scenario, using %s for scenario %s",
                run_dir.name, fallback.name, scenario.get_id(),
            )
            run_dir = fallback
        taken.add(run_dir)
    return run_dir


def write_workflow(scenario: Scenario, main_output_dir: Path, run_dir: Optional[Path] = None) -> Path:
    if scenario.workflow is None:
        raise ValueError(f"Scenario {scenario.get_id()} has no assembled workflow")
    run_dir = run_dir or scenario_run_dir(main_output_dir, scenario)
    run_dir.mkdir(parents=True, exist_ok=True)
    workflow_path = run_dir / WORKFLOW_FILENAME
    with workflow_path.open("w", encoding="utf-8") as f:
        f.write(scenario.workflow.to_json())
    scenario.main_output_dir = main_output_dir
    scenario.run_dir = run_dir
    return workflow_path


def write_workflows(
    document: AuditDocument,
    store: WorkflowTemplateStore,
    main_output_dir: Path,
    attributes: FacilityAttributes,
    diagnostics: Optional[Diagnostics] = None,
    max_workers: int = 4,
    baseline_only: bool = False,
) -> bool:
    """Assemble and write ``in.osw`` for the modeled baseline and every package of measures."""
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    facility = document.facility
    if facility.cb_modeled is None:
        raise StructuralError("A Current Building Modeled scenario is required to write workflows")
    scenarios = [facility.cb_modeled] + ([] if baseline_only else list(facility.poms))

    outcome = configure_workflows(store, scenarios, facility, attributes, diagnostics, max_workers)
    all_written = all(outcome.values())
    taken: Set[Path] = set()
    for scenario in scenarios:
        run_dir = scenario_run_dir(main_output_dir, scenario, taken)
        try:
            path = write_workflow(scenario, main_output_dir, run_dir)
        except (OSError, ValueError) as exc:
            diagnostics.error(f"Scenario {scenario.get_id()}", f"Could not write workflow: {exc}", logger)
            all_written = False
            continue
        logger.info("Wrote workflow for scenario %s to %s", scenario.get_id(), path)
    return all_written


def run_engine(command: List[str], workflow_path: Path, run_dir: Path, timeout: Optional[float] = None) -> None:
    run_dir.mkdir(parents=True, exist_ok=True)
    cmd = list(command) + [str(workflow_path)]
    subprocess.run(cmd, check=True, cwd=str(run_dir), timeout=timeout)


def load_out_descriptor(
    run_dir: Path, diagnostics: Optional[Diagnostics] = None, scope: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """Read the engine output descriptor; a missing, truncated or malformed file reads as ``None``."""
    path = run_dir / OUT_DESCRIPTOR_FILENAME
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (ValueError, OSError) as exc:
        message = f"Unable to read {path}: {exc}"
        if diagnostics is not None:
            diagnostics.error(scope or str(run_dir), message, logger)
        else:
            logger.error(message)
        return None
    if not isinstance(data, dict):
        logger.error("Unable to read %s: expected a JSON object", path)
        return None
    return data


def _engine_log_paths(run_dir: Path, name: str) -> List[Path]:
    return [p for p in (run_dir / name, run_dir / "run" / name) if p.exists()]


def check_simulation_success(
    run_dir: Path,
    config: Optional[EngineConfig] = None,
    diagnostics: Optional[Diagnostics] = None,
    scope: Optional[str] = None,
) -> bool:
    """Apply every run check and report each failing one; a run passes only if all pass."""
    config = config or EngineConfig()
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    scope = scope or str(run_dir)
    success = True

    out_descriptor = load_out_descriptor(run_dir, diagnostics, scope)
    status = None if out_descriptor is None else out_descriptor.get("completed_status")
    if status != config.success_status:
        diagnostics.error(scope, f"{OUT_DESCRIPTOR_FILENAME} completed_status is {status!r}", logger)
        success = False

    if not (run_dir / config.finished_sentinel).exists():
        diagnostics.error(scope, f"{config.finished_sentinel} does not exist", logger)
        success = False

    if (run_dir / config.failed_sentinel).exists():
        diagnostics.error(scope, f"{config.failed_sentinel} exists", logger)
        success = False

    for name in config.engine_logs:
        for path in _engine_log_paths(run_dir, name):
            text = path.read_text(encoding="utf-8", errors="replace")
            for marker in config.fatal_markers:
                if marker in text:
                    diagnostics.error(scope, f"{path.name} contains '{marker}'", logger)
                    success = False
                    break

    return success


def cleanup_large_files(run_dir: Path, names: Optional[List[str]] = None) -> List[Path]:
    removed = []
    for name in names or LARGE_OUTPUT_FILES:
        for path in run_dir.rglob(name):
            path.unlink()
            removed.append(path)
    if removed:
        logger.info("Removed %d large output files from %s", len(removed), run_dir)
    return removed


@dataclass
class DispatchReport:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


class ScenarioDispatcher:
    """Runs scenarios on a bounded worker pool; one failing run never stops the others."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        runner: Optional[EngineRunner] = None,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.config = config or EngineConfig()
        self.runner = runner or run_engine
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    def run_scenario(self, scenario: Scenario) -> bool:
        scope = f"Scenario {scenario.get_id()}"
        if scenario.run_dir is None:
            self.diagnostics.error(scope, "No run directory, workflow was never written", logger)
            scenario.simulation_success = False
            return False
        workflow_path = scenario.run_dir / WORKFLOW_FILENAME
        try:
            self.runner(self.config.command, workflow_path, scenario.run_dir, self.config.timeout)
        except subprocess.TimeoutExpired:
            self.diagnostics.error(scope, f"Engine timed out after {self.config.timeout}s", logger)
        except subprocess.CalledProcessError as exc:
            self.diagnostics.error(scope, f"Engine exited with status {exc.returncode}", logger)
        except OSError as exc:
            self.diagnostics.error(scope, f"Engine could not be started: {exc}", logger)

        success = check_simulation_success(scenario.run_dir, self.config, self.diagnostics, scope)
        scenario.out_descriptor = load_out_descriptor(scenario.run_dir)
        scenario.simulation_success = success
        return success

    def run_all(self, scenarios: List[Scenario]) -> DispatchReport:
        report = DispatchReport()
        if not scenarios:
            return report
        max_workers = max(1, min(self.config.max_workers, len(scenarios)))
        logger.info("Running %d scenarios with %d workers", len(scenarios), max_workers)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.run_scenario, scenario): scenario for scenario in scenarios}
            for future in as_completed(futures):
                scenario = futures[future]
                try:
                    success = future.result()
                except Exception as exc:
                    self.diagnostics.error(f"Scenario {scenario.get_id()}", f"Run raised {exc!r}", logger)
                    scenario.simulation_success = False
                    success = False
                if success:
                    report.succeeded.append(scenario.get_id())
                else:
                    report.failed.append(scenario.get_id())
        return report
