"""Workflow descriptors, the measure → module lookup table and the template store.

A workflow descriptor is the JSON document handed to the engine::

    {"measure_paths": ["..."], "steps": [{"module_name": "...", "arguments": {...}}]}

The template store loads the generic descriptor and the category table once.
Every scenario works on its own ``clone()`` of the template.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from lxml import etree

from .facility import FacilityAttributes

logger = logging.getLogger(__name__)

MODEL_MEASURE = "ModelMeasure"
ENERGYPLUS_MEASURE = "EnergyPlusMeasure"
REPORTING_MEASURE = "ReportingMeasure"
MODULE_KIND_ORDER: Dict[str, int] = {MODEL_MEASURE: 0, ENERGYPLUS_MEASURE: 1, REPORTING_MEASURE: 2}

SKIP_ARGUMENT = "__SKIP__"


@dataclass
class WorkflowStep:
    module_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowStep":
        if "module_name" not in data:
            raise ValueError(f"Workflow step missing keys: ['module_name'] in {data}")
        return cls(module_name=str(data["module_name"]), arguments=dict(data.get("arguments", {})))

    def to_dict(self) -> Dict[str, Any]:
        return {"module_name": self.module_name, "arguments": dict(self.arguments)}

    @property
    def skipped(self) -> bool:
        return self.arguments.get(SKIP_ARGUMENT) is True


@dataclass
class WorkflowDescriptor:
    measure_paths: List[str] = field(default_factory=list)
    steps: List[WorkflowStep] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDescriptor":
        missing = [key for key in ("measure_paths", "steps") if key not in data]
        if missing:
            raise ValueError(f"Workflow descriptor missing keys: {missing}")
        return cls(
            measure_paths=[str(p) for p in data["measure_paths"]],
            steps=[WorkflowStep.from_dict(step) for step in data["steps"]],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"measure_paths": list(self.measure_paths), "steps": [s.to_dict() for s in self.steps]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def clone(self) -> "WorkflowDescriptor":
        return copy.deepcopy(self)

    def step_names(self) -> List[str]:
        return [step.module_name for step in self.steps]

    def steps_named(self, module_name: str) -> List[WorkflowStep]:
        return [step for step in self.steps if step.module_name == module_name]

    def add_measure_path(self, path: str) -> None:
        if path not in self.measure_paths:
            self.measure_paths.append(path)

    def set_measure_paths(self, paths: List[str]) -> None:
        self.measure_paths = list(paths)

    def clear_steps(self) -> None:
        self.steps = []


@dataclass(frozen=True)
class Predicate:
    attribute: str
    equals: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Predicate":
        missing = [key for key in ("attribute", "equals") if key not in data]
        if missing:
            raise ValueError(f"Argument condition missing keys: {missing}")
        if data["attribute"] not in FacilityAttributes.__dataclass_fields__:
            raise ValueError(f"Unknown condition attribute: {data['attribute']}")
        return cls(attribute=str(data["attribute"]), equals=str(data["equals"]))

    def matches(self, attributes: FacilityAttributes) -> bool:
        return attributes.get(self.attribute) == self.equals


@dataclass
class ArgumentSpec:
    name: str
    value: Any
    condition: Optional[Predicate] = None
    interpolate: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArgumentSpec":
        missing = [key for key in ("name", "value") if key not in data]
        if missing:
            raise ValueError(f"Argument missing keys: {missing}")
        condition = data.get("condition")
        return cls(
            name=str(data["name"]),
            value=data["value"],
            condition=Predicate.from_dict(condition) if condition else None,
            interpolate=bool(data.get("interpolate", False)),
        )

    def applies_to(self, attributes: FacilityAttributes) -> bool:
        return self.condition is None or self.condition.matches(attributes)

    def resolve(self, attributes: FacilityAttributes) -> Any:
        if self.interpolate and isinstance(self.value, str):
            return self.value.format(**{k: v or "" for k, v in attributes.as_dict().items()})
        return self.value


@dataclass
class ModuleBinding:
    module_name: str
    arguments: List[ArgumentSpec] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModuleBinding":
        if "module_name" not in data:
            raise ValueError(f"Module binding missing keys: ['module_name'] in {data}")
        return cls(
            module_name=str(data["module_name"]),
            arguments=[ArgumentSpec.from_dict(arg) for arg in data.get("arguments", [])],
        )


class CategoryTable:
    """category → measure name → module bindings.

    A measure name may map to a single binding or to a list of them.
    """

    def __init__(self, table: Dict[str, Dict[str, List[ModuleBinding]]]):
        self._table = table

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, Any]]) -> "CategoryTable":
        table: Dict[str, Dict[str, List[ModuleBinding]]] = {}
        for category, measures in data.items():
            table[category] = {}
            for measure_name, bindings in measures.items():
                if isinstance(bindings, dict):
                    bindings = [bindings]
                table[category][measure_name] = [ModuleBinding.from_dict(b) for b in bindings]
        return cls(table)

    @property
    def categories(self) -> List[str]:
        return list(self._table)

    def has_category(self, category: str) -> bool:
        return category in self._table

    def measure_names(self, category: str) -> List[str]:
        return list(self._table.get(category, {}))

    def lookup(self, category: str, measure_name: str) -> List[ModuleBinding]:
        return list(self._table.get(category, {}).get(measure_name, []))

    def __iter__(self) -> Iterator[str]:
        return iter(self._table)


def read_module_kind(measure_dir: Path) -> Optional[str]:
    """Read the ``Measure Type`` attribute from a module's ``measure.xml``."""
    measure_xml = measure_dir / "measure.xml"
    if not measure_xml.exists():
        return None
    tree = etree.parse(str(measure_xml))
    for attribute in tree.iter("attribute"):
        if attribute.findtext("name") == "Measure Type":
            value = (attribute.findtext("value") or "").strip()
            return value if value in MODULE_KIND_ORDER else None
    return None


class WorkflowTemplateStore:
    """Read-only template descriptor, category table and module kinds shared by every scenario."""

    def __init__(
        self,
        template: WorkflowDescriptor,
        table: CategoryTable,
        module_kinds: Optional[Dict[str, str]] = None,
    ):
        self._template = template
        self.table = table
        self._module_kinds = dict(module_kinds or {})
        for name, kind in self._module_kinds.items():
            if kind not in MODULE_KIND_ORDER:
                raise ValueError(f"Module {name} has unknown kind {kind}")

    @classmethod
    def load(cls, workflow_path: Path, table_path: Path) -> "WorkflowTemplateStore":
        with workflow_path.open("r", encoding="utf-8") as f:
            workflow_data = json.load(f)
        with table_path.open("r", encoding="utf-8") as f:
            table_data = json.load(f)
        template = WorkflowDescriptor.from_dict(workflow_data)
        kinds = workflow_data.get("module_kinds", {})
        logger.info("Loaded workflow template with %d steps from %s", len(template.steps), workflow_path)
        return cls(template, CategoryTable.from_dict(table_data), kinds)

    @property
    def template(self) -> WorkflowDescriptor:
        return self._template.clone()

    def new_descriptor(self) -> WorkflowDescriptor:
        return self._template.clone()

    def module_kind(self, module_name: str, measure_paths: Optional[List[str]] = None) -> Optional[str]:
        if module_name in self._module_kinds:
            return self._module_kinds[module_name]
        for root in measure_paths or self._template.measure_paths:
            kind = read_module_kind(Path(root) / module_name)
            if kind is not None:
                return kind
        return None

    def available_modules(self, measure_paths: Optional[List[str]] = None) -> List[str]:
        names = set()
        for root in measure_paths or self._template.measure_paths:
            root_path = Path(root)
            if root_path.is_dir():
                names.update(p.name for p in root_path.iterdir() if p.is_dir())
        return sorted(names)


def measures_exist(descriptor: WorkflowDescriptor) -> bool:
    """Check that every step's module directory exists under one of the measure paths."""
    all_found = True
    for step in descriptor.steps:
        if not any((Path(root) / step.module_name).is_dir() for root in descriptor.measure_paths):
            logger.error("Module %s not found in measure paths %s", step.module_name, descriptor.measure_paths)
            all_found = False
    return all_found
