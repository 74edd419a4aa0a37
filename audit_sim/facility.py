"""Facility → Site → Building → Section, and the single-facility audit document."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from lxml import etree

from .elements import Measure, XmlElement
from .errors import Diagnostics, StructuralError
from .report import Report
from .scenario import Scenario
from .xml_utils import namespace_of, parse_xml, qualify, read_xml, write_xml

logger = logging.getLogger(__name__)

ASHRAE90_1 = "ASHRAE90.1"
CA_TITLE24 = "CaliforniaTitle24"

# (exclusive upper bound on year built, template)
ASHRAE_TEMPLATES: List[Tuple[int, str]] = [
    (1980, "DOE Ref Pre-1980"),
    (2004, "DOE Ref 1980-2004"),
    (2007, "90.1-2004"),
    (2010, "90.1-2007"),
    (2013, "90.1-2010"),
]
ASHRAE_LATEST = "90.1-2013"
TITLE24_TEMPLATES: List[Tuple[int, str]] = [
    (1978, "CBES Pre-1978"),
    (1992, "CBES T24 1978"),
    (2001, "CBES T24 1992"),
    (2005, "CBES T24 2001"),
    (2008, "CBES T24 2005"),
]
TITLE24_LATEST = "CBES T24 2008"


@dataclass(frozen=True)
class FacilityAttributes:
    """The facility-level values workflow arguments may be conditioned on."""

    bldg_type: Optional[str] = None
    system_type: Optional[str] = None
    template: Optional[str] = None

    def get(self, name: str) -> Optional[str]:
        return getattr(self, name, None)

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"bldg_type": self.bldg_type, "system_type": self.system_type, "template": self.template}


@dataclass
class BuildingTypeRule:
    bldg_type: str
    system_type: str
    min_floor_area: float = 0.0
    max_floor_area: float = float("inf")

    @classmethod
    def from_dict(cls, occupancy: str, data: Dict[str, object]) -> "BuildingTypeRule":
        required = ["bldg_type", "system_type"]
        missing = [key for key in required if key not in data]
        if missing:
            raise ValueError(f"Building type rule for {occupancy} missing keys: {missing}")
        return cls(
            bldg_type=str(data["bldg_type"]),
            system_type=str(data["system_type"]),
            min_floor_area=float(data.get("min_floor_area", 0.0)),
            max_floor_area=float(data.get("max_floor_area", float("inf"))),
        )

    def matches(self, floor_area: Optional[float]) -> bool:
        if floor_area is None:
            return self.min_floor_area == 0.0
        return self.min_floor_area <= floor_area < self.max_floor_area


def load_building_types(path: Path) -> Dict[str, List[BuildingTypeRule]]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return {
        occupancy: [BuildingTypeRule.from_dict(occupancy, rule) for rule in rules]
        for occupancy, rules in data.items()
    }


def standard_template_for_year(year: Optional[int], standard: str = ASHRAE90_1) -> Optional[str]:
    if year is None:
        return None
    if standard == CA_TITLE24:
        table, latest = TITLE24_TEMPLATES, TITLE24_LATEST
    else:
        table, latest = ASHRAE_TEMPLATES, ASHRAE_LATEST
    for upper, template in table:
        if year < upper:
            return template
    return latest


class Section(XmlElement):
    element_name = "Section"

    def get_name(self) -> Optional[str]:
        return self.get_text("PremisesName")

    @property
    def section_type(self) -> Optional[str]:
        return self.get_text("SectionType")

    @property
    def occupancy_classification(self) -> Optional[str]:
        return self.get_text("OccupancyClassification")

    @property
    def floor_area(self) -> Optional[float]:
        return _gross_floor_area(self)

    @property
    def principal_hvac_type(self) -> Optional[str]:
        return self.get_user_defined_fields().get("Principal HVAC System Type")


class Building(XmlElement):
    element_name = "Building"

    def __init__(self, element: etree._Element, ns: Optional[str], site_occupancy: Optional[str] = None):
        super().__init__(element, ns)
        self.site_occupancy = site_occupancy
        self.sections = [Section(el, ns) for el in self.findall("Sections/Section")]

    def get_name(self) -> Optional[str]:
        return self.get_text("PremisesName")

    @property
    def whole_building_sections(self) -> List[Section]:
        return [s for s in self.sections if s.section_type == "Whole building"]

    @property
    def space_function_sections(self) -> List[Section]:
        return [s for s in self.sections if s.section_type == "Space function"]

    @property
    def occupancy_classification(self) -> Optional[str]:
        return self.get_text("OccupancyClassification") or self.site_occupancy

    @property
    def year_of_construction(self) -> Optional[int]:
        return self.get_text_as_int("YearOfConstruction")

    @property
    def year_of_last_major_remodel(self) -> Optional[int]:
        return self.get_text_as_int("YearOfLastMajorRemodel")

    @property
    def built_year(self) -> Optional[int]:
        remodel = self.year_of_last_major_remodel
        built = self.year_of_construction
        if remodel and built and remodel > built:
            return remodel
        return built

    @property
    def gross_floor_area(self) -> Optional[float]:
        return _gross_floor_area(self)

    def standard_template(self, standard: str = ASHRAE90_1) -> Optional[str]:
        template = standard_template_for_year(self.built_year, standard)
        if template is None:
            logger.warning("Building %s has no YearOfConstruction, standard template unknown", self.get_id())
        return template

    def classify(self, rules: Dict[str, List[BuildingTypeRule]]) -> Tuple[Optional[str], Optional[str]]:
        occupancy = self.occupancy_classification
        if occupancy is None:
            logger.warning("Building %s has no OccupancyClassification", self.get_id())
            return None, None
        area = self.gross_floor_area
        for rule in rules.get(occupancy, []):
            if rule.matches(area):
                return rule.bldg_type, rule.system_type
        logger.warning("No building type defined for occupancy %s with floor area %s", occupancy, area)
        return None, None


class Site(XmlElement):
    element_name = "Site"

    def __init__(self, element: etree._Element, ns: Optional[str]):
        super().__init__(element, ns)
        buildings = self.findall("Buildings/Building")
        if len(buildings) > 1:
            raise StructuralError(f"Only 1 Building per Site is supported, found {len(buildings)}")
        self.building = Building(buildings[0], ns, self.occupancy_classification) if buildings else None
        if self.building is None:
            logger.warning("Site %s has no Building", self.get_id())

    def get_name(self) -> Optional[str]:
        return self.get_text("PremisesName")

    @property
    def occupancy_classification(self) -> Optional[str]:
        return self.get_text("OccupancyClassification")

    @property
    def climate_zone_ashrae(self) -> Optional[str]:
        return self.get_text("ClimateZoneType/ASHRAE/ClimateZone")

    @property
    def climate_zone_title24(self) -> Optional[str]:
        return self.get_text("ClimateZoneType/CaliforniaTitle24/ClimateZone")

    @property
    def weather_station_name(self) -> Optional[str]:
        return self.get_text("WeatherStationName")


class Facility(XmlElement):
    element_name = "Facility"

    def __init__(self, element: etree._Element, ns: Optional[str], diagnostics: Optional[Diagnostics] = None):
        super().__init__(element, ns)
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        sites = self.findall("Sites/Site")
        if len(sites) > 1:
            raise StructuralError(f"Only 1 Site per Facility is supported, found {len(sites)}")
        self.site = Site(sites[0], ns) if sites else None
        if self.site is None:
            self.diagnostics.warning(f"Facility {self.get_id()}", "Facility has no Site, building attributes are unavailable", logger)
        self.measures = [Measure(el, ns) for el in self.findall("Measures/Measure")]
        report = self.find("Reports/Report")
        if report is None:
            report = self.get_or_create("Reports/Report")
        self.report = Report(report, ns, self.diagnostics)

    @property
    def building(self) -> Optional[Building]:
        return None if self.site is None else self.site.building

    @property
    def scenarios(self) -> List[Scenario]:
        return self.report.scenarios

    @property
    def cb_modeled(self) -> Optional[Scenario]:
        return self.report.cb_modeled

    @property
    def cb_measured(self) -> List[Scenario]:
        return self.report.cb_measured

    @property
    def poms(self) -> List[Scenario]:
        return self.report.poms

    def get_measure(self, measure_id: str) -> Optional[Measure]:
        for measure in self.measures:
            if measure.get_id() == measure_id:
                return measure
        return None

    def attributes(
        self,
        building_types: Optional[Dict[str, List[BuildingTypeRule]]] = None,
        standard: str = ASHRAE90_1,
        **overrides: Optional[str],
    ) -> FacilityAttributes:
        bldg_type = system_type = template = None
        building = self.building
        if building is not None:
            if building_types:
                bldg_type, system_type = building.classify(building_types)
            template = building.standard_template(standard)
        values = {"bldg_type": bldg_type, "system_type": system_type, "template": template}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return FacilityAttributes(**values)


class AuditDocument:
    """A parsed audit document holding exactly one Facility."""

    def __init__(self, tree: etree._ElementTree, diagnostics: Optional[Diagnostics] = None):
        self.tree = tree
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        root = tree.getroot()
        self.ns = namespace_of(root)
        facilities = root.findall(qualify("Facilities/Facility", self.ns))
        if len(facilities) != 1:
            raise StructuralError(f"Exactly 1 Facility is required, found {len(facilities)}")
        self.facility = Facility(facilities[0], self.ns, self.diagnostics)

    @property
    def report(self) -> Report:
        return self.facility.report

    def save(self, path: Path) -> Path:
        write_xml(self.tree, path)
        logger.info("Saved audit document to %s", path)
        return path

    def to_string(self) -> str:
        return etree.tostring(self.tree, pretty_print=True, encoding="unicode")


def load_document(path: Path, diagnostics: Optional[Diagnostics] = None) -> AuditDocument:
    if not path.exists():
        raise FileNotFoundError(f"Audit document not found: {path}")
    return AuditDocument(read_xml(path), diagnostics)


def parse_document(text: str | bytes, diagnostics: Optional[Diagnostics] = None) -> AuditDocument:
    return AuditDocument(parse_xml(text), diagnostics)


def _gross_floor_area(element: XmlElement) -> Optional[float]:
    gross = None
    conditioned = 0.0
    for floor_area in element.findall("FloorAreas/FloorArea"):
        kind = floor_area.find(qualify("FloorAreaType", element.ns))
        value = floor_area.find(qualify("FloorAreaValue", element.ns))
        if kind is None or value is None or not value.text:
            continue
        if kind.text == "Gross":
            gross = float(value.text)
        elif kind.text in ("Conditioned", "Heated and Cooled", "Heated only", "Cooled only"):
            conditioned += float(value.text)
    if gross is not None:
        return gross
    return conditioned or None

