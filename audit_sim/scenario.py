from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from lxml import etree

from .elements import AllResourceTotal, ResourceUse, TimeSeries, XmlElement
from .errors import StructuralError
from .xml_utils import insert_after, remove, tag

logger = logging.getLogger(__name__)

RESULT_CONTAINERS = ["ResourceUses", "TimeSeriesData", "AllResourceTotals"]
SAVINGS_ELEMENTS = ["AnnualSavingsSiteEnergy", "AnnualSavingsSourceEnergy", "AnnualSavingsCost", "AnnualSavingsByFuels"]


class Scenario(XmlElement):
    """One analysis case of the report.

    Classification is read from the child nested under ``ScenarioType``.
    Results of modeled baseline and package of measures scenarios always come
    from the engine, so anything already stored under them is dropped on load.
    """

    element_name = "Scenario"

    def __init__(self, element: etree._Element, ns: Optional[str]):
        super().__init__(element, ns)
        if not self.get_id():
            raise StructuralError("Scenario element is missing its required ID attribute")

        # Transient execution state, never written to the document.
        self.main_output_dir: Optional[Path] = None
        self.run_dir: Optional[Path] = None
        self.workflow = None
        self.out_descriptor: Optional[Dict[str, Any]] = None
        self.results: Optional[Dict[str, Any]] = None
        self.simulation_success: Optional[bool] = None

        if self.is_modeled() or self.is_package_of_measures():
            self.delete_previous_results()

    # -- classification
    def is_measured(self) -> bool:
        return self.find("ScenarioType/CurrentBuilding/CalculationMethod/Measured") is not None

    def is_modeled(self) -> bool:
        return self.find("ScenarioType/CurrentBuilding/CalculationMethod/Modeled") is not None

    def is_package_of_measures(self) -> bool:
        return self.find("ScenarioType/PackageOfMeasures") is not None

    def is_benchmark(self) -> bool:
        return self.find("ScenarioType/Benchmark") is not None

    def is_target(self) -> bool:
        return self.find("ScenarioType/Target") is not None

    @property
    def classification(self) -> Optional[str]:
        if self.is_modeled():
            return "cb_modeled"
        if self.is_measured():
            return "cb_measured"
        if self.is_package_of_measures():
            return "pom"
        if self.is_benchmark():
            return "benchmark"
        if self.is_target():
            return "target"
        return None

    @property
    def label(self) -> str:
        return self.get_name() or self.get_id()

    def get_measure_ids(self) -> List[str]:
        return self.get_idrefs("MeasureID")

    def get_package_of_measures(self) -> Optional[etree._Element]:
        return self.find("ScenarioType/PackageOfMeasures")

    # -- result children
    def get_resource_uses(self) -> List[ResourceUse]:
        return [ResourceUse(el, self.ns) for el in self.findall("ResourceUses/ResourceUse")]

    def get_all_resource_totals(self) -> List[AllResourceTotal]:
        return [AllResourceTotal(el, self.ns) for el in self.findall("AllResourceTotals/AllResourceTotal")]

    def get_time_series_data(self) -> List[TimeSeries]:
        return [TimeSeries(el, self.ns) for el in self.findall("TimeSeriesData/TimeSeries")]

    def get_resource_use(self, resource_use_id: str) -> Optional[ResourceUse]:
        for resource_use in self.get_resource_uses():
            if resource_use.get_id() == resource_use_id:
                return resource_use
        return None

    def delete_previous_results(self) -> None:
        for name in RESULT_CONTAINERS:
            self.remove_children(name)
        pom = self.get_package_of_measures()
        if pom is not None:
            for name in SAVINGS_ELEMENTS + ["CalculationMethod"]:
                for child in pom.findall(tag(name, self.ns)):
                    pom.remove(child)

    def get_result_container(self, name: str) -> etree._Element:
        """Return the ResourceUses/TimeSeriesData/AllResourceTotals container, creating it in schema order."""
        existing = self.find(name)
        if existing is not None:
            return existing
        container = etree.Element(tag(name, self.ns))
        anchor = None
        for preceding in RESULT_CONTAINERS[: RESULT_CONTAINERS.index(name)]:
            found = self.find(preceding)
            if found is not None:
                anchor = found
        if anchor is None:
            anchor = self.find("ScenarioType")
        if anchor is None:
            anchor = self.find("ScenarioName")
        if anchor is None:
            self.element.insert(0, container)
            return container
        return insert_after(anchor, container)

    def clear_result_container(self, name: str) -> None:
        container = self.find(name)
        if container is not None:
            remove(container)

    def set_simulation_completion_status(self, finished: bool) -> None:
        pom = self.get_package_of_measures()
        if pom is None:
            logger.warning("Scenario %s has no PackageOfMeasures, completion status not recorded", self.get_id())
            return
        node = pom
        for name in ("CalculationMethod", "Modeled", "SimulationCompletionStatus"):
            child = node.find(tag(name, self.ns))
            if child is None:
                child = etree.SubElement(node, tag(name, self.ns))
            node = child
        node.text = "Finished" if finished else "Failed"

    def get_simulation_completion_status(self) -> Optional[str]:
        return self.get_text("ScenarioType/PackageOfMeasures/CalculationMethod/Modeled/SimulationCompletionStatus")

    # -- engine output
    def get_measure_result(self, module_name: str, value_name: str):
        """Look up a step value the engine reported for ``module_name`` in its output descriptor."""
        if not self.out_descriptor:
            return None
        for step in self.out_descriptor.get("steps", []):
            if step.get("measure_dir_name", step.get("module_name")) != module_name:
                continue
            for step_value in step.get("result", {}).get("step_values", []):
                if step_value.get("name") == value_name:
                    return step_value.get("value")
        return None
