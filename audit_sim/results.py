"""Fold engine results back into the audit document.

Annual values become ResourceUse and AllResourceTotal elements, monthly values
become TimeSeries elements, and package of measures scenarios get savings
against the modeled baseline. Every conversion is driven by ``RESOURCE_MAP``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import RESULTS_FILENAME, EngineConfig
from .dispatch import check_simulation_success, scenario_run_dir
from .elements import AllResourceTotal, ResourceUse, TimeSeries
from .errors import Diagnostics
from .facility import AuditDocument
from .scenario import SAVINGS_ELEMENTS, Scenario
from .units import convert
from .xml_utils import format_number, sub_element

logger = logging.getLogger(__name__)

IP_UNITS = "IP"
RESULT_SECTIONS = ["OpenStudio Results", "OpenStudioResults"]
MONTHS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]
ALL_END_USES = "All end uses"
PROVENANCE_PREFIX = "Simulation"

SITE_ENERGY_KEY = "total_site_energy"
SITE_EUI_KEY = "total_site_eui"
UTILITY_COST_KEY = "annual_utility_cost"


@dataclass(frozen=True)
class ResultField:
    element: str
    element_units: str
    results_key: str
    results_units: str


@dataclass(frozen=True)
class ResourceMapping:
    energy_resource: str
    end_use: str
    native_units: str
    fields: List[ResultField] = field(default_factory=list)
    monthly_key: Optional[str] = None
    monthly_units: Optional[str] = None


@dataclass(frozen=True)
class TotalMapping:
    end_use: str
    fields: List[ResultField] = field(default_factory=list)


RESOURCE_MAP: Dict[str, List[Any]] = {
    "ResourceUse": [
        ResourceMapping(
            energy_resource="Electricity",
            end_use=ALL_END_USES,
            native_units="kBtu",
            fields=[
                ResultField("AnnualFuelUseNativeUnits", "kBtu", "fuel_electricity", "kBtu"),
                ResultField("AnnualFuelUseConsistentUnits", "MMBtu", "fuel_electricity", "kBtu"),
                ResultField("AnnualPeakNativeUnits", "kW", "annual_peak_electric_demand", "kW"),
            ],
            monthly_key="electricity_ip_{month}",
            monthly_units="kWh",
        ),
        ResourceMapping(
            energy_resource="Natural gas",
            end_use=ALL_END_USES,
            native_units="kBtu",
            fields=[
                ResultField("AnnualFuelUseNativeUnits", "kBtu", "fuel_natural_gas", "kBtu"),
                ResultField("AnnualFuelUseConsistentUnits", "MMBtu", "fuel_natural_gas", "kBtu"),
            ],
            monthly_key="natural_gas_ip_{month}",
            monthly_units="kWh",
        ),
    ],
    "AllResourceTotal": [
        TotalMapping(
            end_use=ALL_END_USES,
            fields=[
                ResultField("SiteEnergyUse", "kBtu", SITE_ENERGY_KEY, "kBtu"),
                ResultField("SiteEnergyUseIntensity", "kBtu/ft^2", SITE_EUI_KEY, "kBtu/ft^2"),
            ],
        )
    ],
}


def camel(value: str) -> str:
    return "".join(word.capitalize() for word in value.split())


def resource_use_id(scenario: Scenario, mapping: ResourceMapping) -> str:
    return f"{scenario.get_id()}-ResourceUse-{camel(mapping.energy_resource)}-{camel(mapping.end_use)}"


def extract_values(results: Dict[str, Any]) -> Dict[str, Any]:
    for section in RESULT_SECTIONS:
        if isinstance(results.get(section), dict):
            return dict(results[section])
    return {k: v for k, v in results.items() if not isinstance(v, (dict, list))}


def load_results(run_dir: Path, diagnostics: Optional[Diagnostics] = None, scope: str = "") -> Optional[Dict[str, Any]]:
    """Read ``results.json`` from a run directory; only IP results are accepted."""
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    scope = scope or str(run_dir)
    path = run_dir / RESULTS_FILENAME
    if not path.exists():
        diagnostics.error(scope, f"Unable to gather results: {path} does not exist", logger)
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            results = json.load(f)
    except (ValueError, OSError) as exc:
        diagnostics.error(scope, f"Unable to read {path}: {exc}", logger)
        return None
    if not isinstance(results, dict):
        diagnostics.error(scope, f"Unable to read {path}: expected a JSON object", logger)
        return None
    units = results.get("units")
    if units != IP_UNITS:
        diagnostics.error(scope, f"Only able to process IP results, got units {units!r}", logger)
        return None
    return extract_values(results)


def _number(values: Dict[str, Any], key: str) -> Optional[float]:
    raw = values.get(key)
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.error("Result %s is not numeric: %r", key, raw)
        return None


def aggregate_annual(scenario: Scenario, values: Dict[str, Any], diagnostics: Optional[Diagnostics] = None) -> None:
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    scope = f"Scenario {scenario.get_id()}"

    for mapping in RESOURCE_MAP["ResourceUse"]:
        ru_id = resource_use_id(scenario, mapping)
        resource_use = scenario.get_resource_use(ru_id)
        if resource_use is None:
            container = scenario.get_result_container("ResourceUses")
            element = sub_element(container, "ResourceUse", scenario.ns, attrib={"ID": ru_id})
            sub_element(element, "EnergyResource", scenario.ns, mapping.energy_resource)
            sub_element(element, "ResourceUnits", scenario.ns, mapping.native_units)
            sub_element(element, "EndUse", scenario.ns, mapping.end_use)
            resource_use = ResourceUse(element, scenario.ns)
        _apply_fields(resource_use, mapping.fields, values, diagnostics, scope)

    for mapping in RESOURCE_MAP["AllResourceTotal"]:
        total = next((t for t in scenario.get_all_resource_totals() if t.end_use == mapping.end_use), None)
        if total is None:
            container = scenario.get_result_container("AllResourceTotals")
            element = sub_element(
                container, "AllResourceTotal", scenario.ns,
                attrib={"ID": f"{scenario.get_id()}-AllResourceTotal-{camel(mapping.end_use)}"},
            )
            sub_element(element, "EndUse", scenario.ns, mapping.end_use)
            total = AllResourceTotal(element, scenario.ns)
        _apply_fields(total, mapping.fields, values, diagnostics, scope)


def _apply_fields(target, fields: List[ResultField], values: Dict[str, Any], diagnostics: Diagnostics, scope: str) -> None:
    for result_field in fields:
        raw = _number(values, result_field.results_key)
        if raw is None:
            diagnostics.error(scope, f"Unable to find result for {result_field.results_key}", logger)
            continue
        converted = convert(raw, result_field.results_units, result_field.element_units)
        if converted is None:
            continue
        target.set_or_create(result_field.element, converted)


def aggregate_monthly(
    scenario: Scenario, values: Dict[str, Any], year: int, diagnostics: Optional[Diagnostics] = None
) -> List[TimeSeries]:
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    scope = f"Scenario {scenario.get_id()}"
    created: List[TimeSeries] = []
    for mapping in RESOURCE_MAP["ResourceUse"]:
        if mapping.end_use != ALL_END_USES or not mapping.monthly_key:
            continue
        ru_id = resource_use_id(scenario, mapping)
        for month, abbreviation in enumerate(MONTHS, start=1):
            key = mapping.monthly_key.format(month=abbreviation)
            raw = _number(values, key)
            if raw is None:
                diagnostics.error(scope, f"Monthly result {key} is missing", logger)
                continue
            reading = convert(raw, mapping.monthly_units, mapping.native_units)
            if reading is None:
                continue
            container = scenario.get_result_container("TimeSeriesData")
            element = sub_element(
                container, "TimeSeries", scenario.ns, attrib={"ID": f"{ru_id}-TimeSeries-{month:02d}"}
            )
            series = TimeSeries(element, scenario.ns)
            series.add_child("ReadingType", "Total")
            series.add_child("TimeSeriesReadingQuantity", "Energy")
            series.set_monthly_timestamps(pd.Timestamp(year=year, month=month, day=1))
            series.add_child("IntervalFrequency", "Month")
            series.add_child("IntervalReading", reading)
            series.add_child("ResourceUseID", attrib={"IDref": ru_id})
            created.append(series)
    return created


def regenerate_results(
    scenario: Scenario, values: Dict[str, Any], year: int, diagnostics: Optional[Diagnostics] = None
) -> None:
    """Replace whatever results the scenario holds with ones built from ``values``."""
    for name in ("ResourceUses", "TimeSeriesData", "AllResourceTotals"):
        scenario.clear_result_container(name)
    aggregate_annual(scenario, values, diagnostics)
    aggregate_monthly(scenario, values, year, diagnostics)


def compute_savings(
    scenario: Scenario,
    baseline: Optional[Scenario],
    failed: List[str],
    diagnostics: Optional[Diagnostics] = None,
) -> bool:
    """Write baseline minus scenario savings onto a package of measures scenario."""
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    scope = f"Scenario {scenario.get_id()}"
    pom = scenario.get_package_of_measures()
    if pom is not None:
        for name in SAVINGS_ELEMENTS:
            for child in scenario.findall(f"ScenarioType/PackageOfMeasures/{name}"):
                pom.remove(child)

    finished = bool(scenario.simulation_success) and scenario.results is not None
    scenario.set_simulation_completion_status(finished)
    scenario.remove_user_defined_fields(PROVENANCE_PREFIX)
    scenario.set_user_defined_field(f"{PROVENANCE_PREFIX}CompletedStatus", "Success" if finished else "Failed")
    baseline_finished = baseline is not None and bool(baseline.simulation_success) and baseline.results is not None
    scenario.set_user_defined_field(
        f"{PROVENANCE_PREFIX}BaselineCompletedStatus", "Success" if baseline_finished else "Failed"
    )

    ok = True
    if scenario.results is None:
        diagnostics.error(scope, "No results available, savings not computed", logger)
        ok = False
    if baseline is None or baseline.results is None:
        diagnostics.error(scope, "Baseline results unavailable, savings not computed", logger)
        ok = False
    if not ok:
        if scenario.get_id() not in failed:
            failed.append(scenario.get_id())
        return False
    if pom is None:
        diagnostics.error(scope, "Scenario has no PackageOfMeasures element", logger)
        return False

    ns = scenario.ns
    site_energy = _number(scenario.results, SITE_ENERGY_KEY)
    baseline_site_energy = _number(baseline.results, SITE_ENERGY_KEY)
    if site_energy is not None and baseline_site_energy is not None:
        savings = convert(baseline_site_energy - site_energy, "kBtu", "MMBtu")
        sub_element(pom, "AnnualSavingsSiteEnergy", ns, _fmt(savings))
        scenario.set_user_defined_field(f"{PROVENANCE_PREFIX}AnnualSiteEnergy_MMBtu", convert(site_energy, "kBtu", "MMBtu"))
        scenario.set_user_defined_field(f"{PROVENANCE_PREFIX}AnnualSiteEnergySavings_MMBtu", savings)
    else:
        diagnostics.error(scope, f"Cannot compute site energy savings, {SITE_ENERGY_KEY} missing", logger)

    cost = _number(scenario.results, UTILITY_COST_KEY)
    baseline_cost = _number(baseline.results, UTILITY_COST_KEY)
    if cost is not None and baseline_cost is not None:
        sub_element(pom, "AnnualSavingsCost", ns, str(int(baseline_cost - cost)))
        scenario.set_user_defined_field(f"{PROVENANCE_PREFIX}AnnualUtilityCost", cost)
    else:
        diagnostics.error(scope, f"Cannot compute cost savings, {UTILITY_COST_KEY} missing", logger)

    by_fuels = None
    for mapping in RESOURCE_MAP["ResourceUse"]:
        key = next((f.results_key for f in mapping.fields if f.element == "AnnualFuelUseNativeUnits"), None)
        fuel = _number(scenario.results, key) if key else None
        baseline_fuel = _number(baseline.results, key) if key else None
        if fuel is None or baseline_fuel is None:
            diagnostics.error(scope, f"Cannot compute {mapping.energy_resource} savings, {key} missing", logger)
            continue
        if by_fuels is None:
            by_fuels = sub_element(pom, "AnnualSavingsByFuels", ns)
        by_fuel = sub_element(by_fuels, "AnnualSavingsByFuel", ns)
        sub_element(by_fuel, "EnergyResource", ns, mapping.energy_resource)
        sub_element(by_fuel, "ResourceUnits", ns, mapping.native_units)
        sub_element(by_fuel, "AnnualSavingsNativeUnits", ns, _fmt(baseline_fuel - fuel))
    return True


def _fmt(value: Optional[float]) -> Optional[str]:
    return None if value is None else format_number(value)


def gather_results(
    document: AuditDocument,
    main_output_dir: Optional[Path] = None,
    year: Optional[int] = None,
    baseline_only: bool = False,
    config: Optional[EngineConfig] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> List[str]:
    """Aggregate every simulated scenario and return the IDs of those that failed."""
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    year = year or pd.Timestamp.today().year
    facility = document.facility
    baseline = facility.cb_modeled
    scenarios = ([baseline] if baseline is not None else []) + ([] if baseline_only else list(facility.poms))
    failed: List[str] = []
    taken = {s.run_dir for s in scenarios if s.run_dir is not None}

    for scenario in scenarios:
        scope = f"Scenario {scenario.get_id()}"
        if scenario.run_dir is None and main_output_dir is not None:
            scenario.run_dir = scenario_run_dir(main_output_dir, scenario, taken)
        if scenario.run_dir is None:
            diagnostics.error(scope, "No run directory to gather results from", logger)
            failed.append(scenario.get_id())
            continue
        if scenario.simulation_success is None:
            scenario.simulation_success = check_simulation_success(scenario.run_dir, config, diagnostics, scope)
        if not scenario.simulation_success:
            diagnostics.error(scope, "Unable to gather results as simulation was unsuccessful", logger)
            scenario.results = None
        else:
            scenario.results = load_results(scenario.run_dir, diagnostics, scope)
        if scenario.results is None:
            failed.append(scenario.get_id())
            continue
        regenerate_results(scenario, scenario.results, year, diagnostics)
        logger.info("Gathered results for scenario %s", scenario.get_id())

    if baseline is None:
        diagnostics.error("Report", "No Current Building Modeled scenario, savings cannot be computed", logger)
    if not baseline_only:
        for pom in facility.poms:
            compute_savings(pom, baseline, failed, diagnostics)
    return failed


def results_summary(document: AuditDocument) -> pd.DataFrame:
    records = []
    for scenario in document.facility.scenarios:
        record: Dict[str, Any] = {
            "scenario_id": scenario.get_id(),
            "scenario_name": scenario.get_name(),
            "classification": scenario.classification,
            "status": _status(scenario),
        }
        for total in scenario.get_all_resource_totals():
            if total.end_use == ALL_END_USES:
                record["site_energy_kbtu"] = total.site_energy_use()
                record["site_eui_kbtu_ft2"] = total.site_energy_use_intensity()
        for resource_use in scenario.get_resource_uses():
            if resource_use.end_use == ALL_END_USES and resource_use.energy_resource:
                column = f"{resource_use.energy_resource.lower().replace(' ', '_')}_mmbtu"
                record[column] = resource_use.get_text_as_float("AnnualFuelUseConsistentUnits")
        if scenario.is_package_of_measures():
            record["site_energy_savings_mmbtu"] = scenario.get_text_as_float(
                "ScenarioType/PackageOfMeasures/AnnualSavingsSiteEnergy"
            )
            record["cost_savings"] = scenario.get_text_as_float("ScenarioType/PackageOfMeasures/AnnualSavingsCost")
        records.append(record)
    return pd.DataFrame(records)


def _status(scenario: Scenario) -> str:
    if scenario.simulation_success is None:
        return "not run"
    return "ok" if scenario.simulation_success and scenario.results is not None else "failed"


def write_summary_csv(df: pd.DataFrame, path: Path, overwrite: bool = False) -> pd.DataFrame:
    if path.exists() and not overwrite:
        existing = pd.read_csv(path)
        df = pd.concat([existing, df], ignore_index=True)
        df = df.drop_duplicates(subset=["scenario_id"], keep="last")
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return df
