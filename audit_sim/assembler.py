from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import Diagnostics
from .facility import Facility, FacilityAttributes
from .scenario import Scenario
from .workflow import (
    ENERGYPLUS_MEASURE,
    MODEL_MEASURE,
    MODULE_KIND_ORDER,
    REPORTING_MEASURE,
    ModuleBinding,
    WorkflowDescriptor,
    WorkflowStep,
    WorkflowTemplateStore,
)

logger = logging.getLogger(__name__)

OTHER_MEASURE_NAME = "Other"

KindResolver = Callable[[str], Optional[str]]


def insert_module_at_position(
    descriptor: WorkflowDescriptor,
    kind: str,
    module_name: str,
    position: int,
    arguments: Optional[Dict[str, Any]],
    kind_of: KindResolver,
) -> bool:
    """Insert a step as the ``position``-th step of its kind.

    Steps whose kind cannot be resolved are passed over. When no step of the
    kind exists yet, the step lands just before the first step of a later kind,
    or at the end of the list. Returns False, leaving the descriptor untouched,
    when the position cannot be reached.
    """
    if kind not in MODULE_KIND_ORDER:
        raise ValueError(f"Unknown module kind: {kind}")
    target_rank = MODULE_KIND_ORDER[kind]
    new_step = WorkflowStep(module_name, dict(arguments or {}))
    count = 0
    for index, step in enumerate(descriptor.steps):
        step_kind = kind_of(step.module_name)
        if step_kind is None:
            continue
        rank = MODULE_KIND_ORDER[step_kind]
        if rank < target_rank:
            continue
        if count == position:
            descriptor.steps.insert(index, new_step)
            return True
        if rank > target_rank:
            break
        count += 1
    else:
        if count == position:
            descriptor.steps.append(new_step)
            return True
    logger.warning(
        "Could not insert %s at position %d: only %d %s steps in the workflow", module_name, position, count, kind
    )
    return False


def insert_model_module(store: WorkflowTemplateStore, descriptor: WorkflowDescriptor, module_name: str,
                        position: int, arguments: Optional[Dict[str, Any]] = None) -> bool:
    return insert_module_at_position(descriptor, MODEL_MEASURE, module_name, position, arguments,
                                     _resolver(store, descriptor))


def insert_energyplus_module(store: WorkflowTemplateStore, descriptor: WorkflowDescriptor, module_name: str,
                             position: int, arguments: Optional[Dict[str, Any]] = None) -> bool:
    return insert_module_at_position(descriptor, ENERGYPLUS_MEASURE, module_name, position, arguments,
                                     _resolver(store, descriptor))


def insert_reporting_module(store: WorkflowTemplateStore, descriptor: WorkflowDescriptor, module_name: str,
                            position: int, arguments: Optional[Dict[str, Any]] = None) -> bool:
    return insert_module_at_position(descriptor, REPORTING_MEASURE, module_name, position, arguments,
                                     _resolver(store, descriptor))


def _resolver(store: WorkflowTemplateStore, descriptor: WorkflowDescriptor) -> KindResolver:
    return lambda name: store.module_kind(name, descriptor.measure_paths)


def purge_skipped_steps(descriptor: WorkflowDescriptor) -> int:
    """Drop steps flagged ``__SKIP__: true``; a missing or false flag keeps the step."""
    kept = [step for step in descriptor.steps if not step.skipped]
    removed = len(descriptor.steps) - len(kept)
    descriptor.steps = kept
    return removed


def bind_module(
    store: WorkflowTemplateStore,
    descriptor: WorkflowDescriptor,
    binding: ModuleBinding,
    attributes: FacilityAttributes,
) -> List[WorkflowStep]:
    steps = descriptor.steps_named(binding.module_name)
    if not steps:
        kind_of = _resolver(store, descriptor)
        kind = kind_of(binding.module_name)
        inserted = False
        if kind is not None:
            position = sum(1 for step in descriptor.steps if kind_of(step.module_name) == kind)
            inserted = insert_module_at_position(descriptor, kind, binding.module_name, position, None, kind_of)
        if not inserted:
            descriptor.steps.append(WorkflowStep(binding.module_name))
        steps = descriptor.steps_named(binding.module_name)
    for argument in binding.arguments:
        if not argument.applies_to(attributes):
            logger.debug("Skipping %s.%s: condition %s not met", binding.module_name, argument.name, argument.condition)
            continue
        value = argument.resolve(attributes)
        for step in steps:
            step.arguments[argument.name] = value
    return steps


def configure_workflow_for_scenario(
    store: WorkflowTemplateStore,
    scenario: Scenario,
    facility: Facility,
    attributes: FacilityAttributes,
    diagnostics: Optional[Diagnostics] = None,
) -> Tuple[WorkflowDescriptor, bool]:
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    scope = f"Scenario {scenario.get_id()}"
    descriptor = store.new_descriptor()

    measure_ids = scenario.get_measure_ids()
    found = 0
    for measure_id in measure_ids:
        measure = facility.get_measure(measure_id)
        if measure is None:
            diagnostics.warning(scope, f"Measure ID {measure_id} is not defined in the Facility", logger)
            continue
        category = measure.system_category_affected
        if category is None or not store.table.has_category(category):
            diagnostics.warning(scope, f"Category {category!r} of measure {measure_id} has no module mapping", logger)
            continue
        measure_name = measure.get_name()
        if measure_name == OTHER_MEASURE_NAME:
            measure_name = measure.custom_module_name
        bound = 0
        for binding in store.table.lookup(category, measure_name or ""):
            bind_module(store, descriptor, binding, attributes)
            bound += 1
        if bound == 0:
            diagnostics.error(
                scope, f"Could not find measure '{measure_name}' under category '{category}'", logger
            )
            continue
        found += 1

    success = found == len(measure_ids)
    if not success:
        diagnostics.error(scope, f"{len(measure_ids)} measures expected, {found} found", logger)

    removed = purge_skipped_steps(descriptor)
    if removed:
        logger.info("%s: removed %d skipped steps", scope, removed)
    scenario.workflow = descriptor
    return descriptor, success


def configure_workflows(
    store: WorkflowTemplateStore,
    scenarios: List[Scenario],
    facility: Facility,
    attributes: FacilityAttributes,
    diagnostics: Optional[Diagnostics] = None,
    max_workers: int = 4,
) -> Dict[str, bool]:
    """Assemble every scenario's workflow on a worker pool; returns success per scenario ID."""
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    outcome: Dict[str, bool] = {}
    if not scenarios:
        return outcome
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(scenarios)))) as executor:
        futures = {
            executor.submit(configure_workflow_for_scenario, store, scenario, facility, attributes, diagnostics):
                scenario.get_id()
            for scenario in scenarios
        }
        for future in as_completed(futures):
            _, success = future.result()
            outcome[futures[future]] = success
    return outcome
