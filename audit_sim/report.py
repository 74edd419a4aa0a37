from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from lxml import etree

from .elements import AuditDate, Utility, XmlElement
from .errors import Diagnostics
from .scenario import Scenario
from .xml_utils import sub_element

logger = logging.getLogger(__name__)


class Report(XmlElement):
    """Scenarios, audit dates and utilities of the audit, with the scenario views used by the runs."""

    element_name = "Report"

    def __init__(self, element: etree._Element, ns: Optional[str], diagnostics: Optional[Diagnostics] = None):
        super().__init__(element, ns)
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.scenarios: List[Scenario] = []
        self.cb_modeled: Optional[Scenario] = None
        self.cb_measured: List[Scenario] = []
        self.poms: List[Scenario] = []
        self.audit_dates = [AuditDate(el, ns) for el in self.findall("AuditDates/AuditDate")]
        self.utilities = [Utility(el, ns) for el in self.findall("Utilities/Utility")]
        self._read_scenarios()

    def _read_scenarios(self) -> None:
        modeled: List[Scenario] = []
        for element in self.findall("Scenarios/Scenario"):
            scenario = Scenario(element, self.ns)
            self.scenarios.append(scenario)
            if scenario.is_modeled():
                modeled.append(scenario)
            if scenario.is_measured():
                self.cb_measured.append(scenario)
            if scenario.is_package_of_measures():
                self.poms.append(scenario)

        if not self.scenarios:
            self.diagnostics.warning("Report", "No Scenario elements found", logger)
        if not modeled:
            self.diagnostics.warning("Report", "A Current Building Modeled Scenario is required.", logger)
            return
        self.cb_modeled = modeled[0]
        if len(modeled) > 1:
            self.diagnostics.warning(
                "Report",
                "Only 1 Current Building Modeled Scenario is supported. "
                f"Using Scenario with ID: {self.cb_modeled.get_id()}",
                logger,
            )
        else:
            logger.info("Current Building Modeled Scenario has ID: %s", self.cb_modeled.get_id())

    def benchmark_scenarios(self) -> List[Scenario]:
        return [s for s in self.scenarios if s.is_benchmark()]

    def target_scenarios(self) -> List[Scenario]:
        return [s for s in self.scenarios if s.is_target()]

    def has_benchmark(self) -> bool:
        return any(s.is_benchmark() for s in self.scenarios)

    def has_target(self) -> bool:
        return any(s.is_target() for s in self.scenarios)

    def get_scenario(self, scenario_id: str) -> Optional[Scenario]:
        for scenario in self.scenarios:
            if scenario.get_id() == scenario_id:
                return scenario
        return None

    # -- audit dates and utilities
    def get_newest_audit_date(self) -> Optional[date]:
        dates = [d.audit_date for d in self.audit_dates if d.audit_date is not None]
        return max(dates) if dates else None

    def get_oldest_audit_date(self) -> Optional[date]:
        dates = [d.audit_date for d in self.audit_dates if d.audit_date is not None]
        return min(dates) if dates else None

    def get_all_utility_meter_numbers(self) -> List[str]:
        numbers: List[str] = []
        for utility in self.utilities:
            numbers += utility.get_utility_meter_numbers()
        return numbers

    def get_all_utility_names(self) -> List[str]:
        return [u.get_utility_name() for u in self.utilities if u.get_utility_name()]

    def get_auditor_contact_id(self) -> Optional[str]:
        return self.get_attribute_for_element("AuditorContactID", "IDref")

    # -- site EUI
    def get_first_scenario_site_eui(self, scenario: Scenario) -> Optional[float]:
        euis = [t.site_energy_use_intensity() for t in scenario.get_all_resource_totals()]
        euis = [e for e in euis if e is not None]
        if not euis:
            logger.warning("Scenario ID: %s has no SiteEnergyUseIntensity in its AllResourceTotals", scenario.get_id())
            return None
        if len(euis) > 1:
            logger.warning("Scenario ID: %s has %d SiteEnergyUseIntensity values, returning the first", scenario.get_id(), len(euis))
        return euis[0]

    def get_first_benchmark_site_eui(self) -> Optional[float]:
        benchmarks = self.benchmark_scenarios()
        euis = [(s.get_id(), self.get_first_scenario_site_eui(s)) for s in benchmarks]
        euis = [(sid, eui) for sid, eui in euis if eui is not None]
        if not euis:
            logger.warning("No Benchmark Scenarios exist with SiteEnergyUseIntensity defined")
            return None
        if len(euis) > 1:
            logger.warning("Multiple Benchmark Scenarios define SiteEnergyUseIntensity, returning Scenario ID: %s", euis[0][0])
        return euis[0][1]

    def get_first_cb_modeled_site_eui(self) -> Optional[float]:
        if self.cb_modeled is None:
            return None
        return self.get_first_scenario_site_eui(self.cb_modeled)

    def add_cb_modeled(self, scenario_id: str = "Scenario-Baseline") -> Scenario:
        if self.cb_modeled is not None:
            logger.warning(
                "A Current Building Modeled scenario already exists (Scenario ID: %s). A new one was not added.",
                self.cb_modeled.get_id(),
            )
            return self.cb_modeled
        container = self.get_or_create("Scenarios")
        element = sub_element(container, "Scenario", self.ns, attrib={"ID": scenario_id})
        sub_element(element, "ScenarioName", self.ns, "Baseline")
        scenario_type = sub_element(element, "ScenarioType", self.ns)
        current = sub_element(scenario_type, "CurrentBuilding", self.ns)
        method = sub_element(current, "CalculationMethod", self.ns)
        sub_element(method, "Modeled", self.ns)
        self.cb_modeled = Scenario(element, self.ns)
        self.scenarios.append(self.cb_modeled)
        logger.info("A Current Building Modeled scenario was added (Scenario ID: %s)", scenario_id)
        return self.cb_modeled
