"""
Shared fixtures for the audit_sim test suite.

Documents are assembled from small XML snippets so each test can describe
exactly the scenarios and measures it needs.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import pytest

from audit_sim.config import BASE_WORKFLOW_PATH, BUILDING_TYPES_PATH, MEASURE_TABLE_PATH
from audit_sim.facility import load_building_types, parse_document
from audit_sim.results import MONTHS
from audit_sim.workflow import WorkflowTemplateStore

NS = "http://buildingsync.net/schemas/bedes-auc/2019"

TECHNOLOGY_ELEMENT = {
    "Lighting": "LightingImprovements",
    "Plug Load": "PlugLoadReductions",
    "Other HVAC": "OtherHVAC",
    "Heating System": "BoilerPlantImprovements",
}


# ============================================================================
# DOCUMENT BUILDERS
# ============================================================================

def measure_xml(measure_id: str, category: str, name: str, custom_name: Optional[str] = None) -> str:
    technology = TECHNOLOGY_ELEMENT.get(category, "OtherHVAC")
    udf = ""
    if custom_name:
        udf = (
            "<auc:UserDefinedFields><auc:UserDefinedField>"
            "<auc:FieldName>OpenStudioMeasureName</auc:FieldName>"
            f"<auc:FieldValue>{custom_name}</auc:FieldValue>"
            "</auc:UserDefinedField></auc:UserDefinedFields>"
        )
    return (
        f'<auc:Measure ID="{measure_id}">'
        f"<auc:SystemCategoryAffected>{category}</auc:SystemCategoryAffected>"
        "<auc:TechnologyCategories><auc:TechnologyCategory>"
        f"<auc:{technology}><auc:MeasureName>{name}</auc:MeasureName></auc:{technology}>"
        "</auc:TechnologyCategory></auc:TechnologyCategories>"
        f"{udf}"
        "</auc:Measure>"
    )


def scenario_xml(
    scenario_id: str,
    kind: str,
    name: Optional[str] = None,
    measure_ids: Iterable[str] = (),
    with_results: bool = False,
) -> str:
    if kind == "measured":
        scenario_type = "<auc:CurrentBuilding><auc:CalculationMethod><auc:Measured/></auc:CalculationMethod></auc:CurrentBuilding>"
    elif kind == "modeled":
        scenario_type = "<auc:CurrentBuilding><auc:CalculationMethod><auc:Modeled/></auc:CalculationMethod></auc:CurrentBuilding>"
    elif kind == "pom":
        refs = "".join(f'<auc:MeasureID IDref="{m}"/>' for m in measure_ids)
        scenario_type = (
            "<auc:PackageOfMeasures>"
            '<auc:ReferenceCase IDref="Scenario-Baseline"/>'
            f"<auc:MeasureIDs>{refs}</auc:MeasureIDs>"
            "<auc:AnnualSavingsSiteEnergy>999</auc:AnnualSavingsSiteEnergy>"
            "</auc:PackageOfMeasures>"
        )
    elif kind == "benchmark":
        scenario_type = "<auc:Benchmark/>"
    elif kind == "target":
        scenario_type = "<auc:Target/>"
    else:
        raise ValueError(kind)
    results = ""
    if with_results:
        results = (
            f'<auc:ResourceUses><auc:ResourceUse ID="{scenario_id}-RU">'
            "<auc:EnergyResource>Electricity</auc:EnergyResource>"
            "<auc:ResourceUnits>kWh</auc:ResourceUnits>"
            "<auc:EndUse>All end uses</auc:EndUse>"
            "<auc:AnnualFuelUseNativeUnits>1234</auc:AnnualFuelUseNativeUnits>"
            "</auc:ResourceUse></auc:ResourceUses>"
            f'<auc:TimeSeriesData><auc:TimeSeries ID="{scenario_id}-TS">'
            "<auc:IntervalReading>10</auc:IntervalReading>"
            f'<auc:ResourceUseID IDref="{scenario_id}-RU"/>'
            "</auc:TimeSeries></auc:TimeSeriesData>"
            f'<auc:AllResourceTotals><auc:AllResourceTotal ID="{scenario_id}-ART">'
            "<auc:EndUse>All end uses</auc:EndUse>"
            "<auc:SiteEnergyUse>4210</auc:SiteEnergyUse>"
            "<auc:SiteEnergyUseIntensity>55.5</auc:SiteEnergyUseIntensity>"
            "</auc:AllResourceTotal></auc:AllResourceTotals>"
        )
    name_xml = f"<auc:ScenarioName>{name}</auc:ScenarioName>" if name else ""
    return (
        f'<auc:Scenario ID="{scenario_id}">{name_xml}'
        f"<auc:ScenarioType>{scenario_type}</auc:ScenarioType>{results}</auc:Scenario>"
    )


def building_xml(building_id: str = "Building-1", year: int = 2005, floor_area: float = 15000) -> str:
    return (
        f'<auc:Building ID="{building_id}">'
        "<auc:PremisesName>Office Building</auc:PremisesName>"
        "<auc:FloorAreas><auc:FloorArea>"
        "<auc:FloorAreaType>Gross</auc:FloorAreaType>"
        f"<auc:FloorAreaValue>{floor_area}</auc:FloorAreaValue>"
        "</auc:FloorArea></auc:FloorAreas>"
        f"<auc:YearOfConstruction>{year}</auc:YearOfConstruction>"
        '<auc:Sections><auc:Section ID="Section-1">'
        "<auc:SectionType>Whole building</auc:SectionType>"
        "<auc:OccupancyClassification>Office</auc:OccupancyClassification>"
        "</auc:Section></auc:Sections>"
        "</auc:Building>"
    )


def document_xml(
    scenarios: Iterable[str] = (),
    measures: Iterable[str] = (),
    facilities: int = 1,
    sites: int = 1,
    buildings: int = 1,
    year: int = 2005,
) -> str:
    building_block = "".join(building_xml(f"Building-{i + 1}", year) for i in range(buildings))
    site_block = "".join(
        f'<auc:Site ID="Site-{i + 1}">'
        "<auc:ClimateZoneType><auc:ASHRAE><auc:ClimateZone>3C</auc:ClimateZone></auc:ASHRAE></auc:ClimateZoneType>"
        "<auc:OccupancyClassification>Office</auc:OccupancyClassification>"
        f"<auc:Buildings>{building_block}</auc:Buildings>"
        "</auc:Site>"
        for i in range(sites)
    )
    report = (
        '<auc:Report ID="Report-1">'
        f"<auc:Scenarios>{''.join(scenarios)}</auc:Scenarios>"
        "<auc:AuditDates>"
        "<auc:AuditDate><auc:Date>2019-05-01</auc:Date></auc:AuditDate>"
        "<auc:AuditDate><auc:Date>2020-03-15</auc:Date></auc:AuditDate>"
        "</auc:AuditDates>"
        '<auc:Utilities><auc:Utility ID="Utility-1">'
        "<auc:UtilityMeterNumbers><auc:UtilityMeterNumber>M-100</auc:UtilityMeterNumber>"
        "<auc:UtilityMeterNumber>M-200</auc:UtilityMeterNumber></auc:UtilityMeterNumbers>"
        "<auc:UtilityName>City Power</auc:UtilityName>"
        "</auc:Utility></auc:Utilities>"
        "</auc:Report>"
    )
    facility_block = "".join(
        f'<auc:Facility ID="Facility-{i + 1}">'
        f"<auc:Sites>{site_block}</auc:Sites>"
        f"<auc:Measures>{''.join(measures)}</auc:Measures>"
        f"<auc:Reports>{report}</auc:Reports>"
        "</auc:Facility>"
        for i in range(facilities)
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<auc:BuildingSync xmlns:auc="{NS}"><auc:Facilities>{facility_block}</auc:Facilities></auc:BuildingSync>'
    )


STANDARD_MEASURES = [
    measure_xml("Measure-1", "Lighting", "Retrofit with light emitting diode technologies"),
    measure_xml("Measure-2", "Plug Load", "Replace with ENERGY STAR rated"),
    measure_xml("Measure-3", "Unmapped Category", "Something unusual"),
    measure_xml("Measure-4", "Other HVAC", "Other", custom_name="Enable Minimal Shadowing"),
    measure_xml("Measure-5", "Lighting", "Add daylight controls"),
]

STANDARD_SCENARIOS = [
    scenario_xml("Scenario-Measured", "measured", "Measured", with_results=True),
    scenario_xml("Scenario-Baseline", "modeled", "Baseline", with_results=True),
    scenario_xml("Scenario-LED", "pom", "LED Retrofit", ["Measure-1"], with_results=True),
    scenario_xml("Scenario-Plug", "pom", None, ["Measure-2"]),
    scenario_xml("Scenario-Benchmark", "benchmark", "Benchmark", with_results=True),
    scenario_xml("Scenario-Target", "target", "Target", with_results=True),
]


# ============================================================================
# ENGINE OUTPUT BUILDERS
# ============================================================================

def sample_results(site_energy_kbtu: float = 200000.0, cost: float = 12000.0) -> Dict[str, Any]:
    """Flat engine result values; electricity and gas split the site energy evenly."""
    values: Dict[str, Any] = {
        "total_site_energy": site_energy_kbtu,
        "total_site_eui": site_energy_kbtu / 15000.0,
        "fuel_electricity": site_energy_kbtu / 2,
        "fuel_natural_gas": site_energy_kbtu / 2,
        "annual_peak_electric_demand": 42.0,
        "annual_utility_cost": cost,
    }
    for index, month in enumerate(MONTHS, start=1):
        values[f"electricity_ip_{month}"] = 1000.0 + index
        values[f"natural_gas_ip_{month}"] = 500.0 + index
    return values


def write_engine_outputs(
    run_dir: Path,
    results: Optional[Dict[str, Any]] = None,
    status: str = "Success",
    finished: bool = True,
    failed: bool = False,
    units: str = "IP",
) -> Path:
    run_dir.mkdir(parents=True, exist_ok=True)
    (run_dir / "out.osw").write_text(json.dumps({"completed_status": status, "steps": []}), encoding="utf-8")
    if finished:
        (run_dir / "finished.job").write_text("", encoding="utf-8")
    if failed:
        (run_dir / "failed.job").write_text("", encoding="utf-8")
    if results is not None:
        payload = {"units": units, "OpenStudio Results": results}
        (run_dir / "results.json").write_text(json.dumps(payload), encoding="utf-8")
    return run_dir


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def audit_xml() -> str:
    """A single-facility document with one scenario of every classification."""
    return document_xml(STANDARD_SCENARIOS, STANDARD_MEASURES)


@pytest.fixture
def document(audit_xml):
    return parse_document(audit_xml)


@pytest.fixture(scope="session")
def store() -> WorkflowTemplateStore:
    """Template store loaded from the packaged workflow and measure table."""
    return WorkflowTemplateStore.load(BASE_WORKFLOW_PATH, MEASURE_TABLE_PATH)


@pytest.fixture(scope="session")
def building_types():
    return load_building_types(BUILDING_TYPES_PATH)
