"""Typed wrappers around audit document nodes.

Every wrapper checks the tag of the node it is built from, so a document with
the wrong shape fails while it is being read instead of somewhere downstream.
Children are looked up by tag path; an absent optional child reads as ``None``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, List, Optional

import pandas as pd
from lxml import etree

from .errors import StructuralError
from .xml_utils import format_number, local_name, qualify, remove, sub_element

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


class XmlElement:
    element_name = ""

    def __init__(self, element: etree._Element, ns: Optional[str]):
        actual = local_name(element)
        if actual != self.element_name:
            raise StructuralError(
                f"Attempted to initialize {self.element_name} object with Element name of: {actual}"
            )
        self.element = element
        self.ns = ns

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.get_id()!r})"

    # -- lookup
    def find(self, path: str) -> Optional[etree._Element]:
        return self.element.find(qualify(path, self.ns))

    def findall(self, path: str) -> List[etree._Element]:
        return self.element.findall(qualify(path, self.ns))

    def get_id(self) -> Optional[str]:
        return self.element.get("ID")

    def get_name(self) -> Optional[str]:
        return self.get_text(f"{self.element_name}Name")

    def get_text(self, path: str) -> Optional[str]:
        child = self.find(path)
        if child is None or child.text is None:
            return None
        text = child.text.strip()
        return text or None

    def get_text_as_float(self, path: str) -> Optional[float]:
        text = self.get_text(path)
        if text is None:
            return None
        try:
            return float(text)
        except ValueError:
            logger.warning("%s %s: %s is not numeric (%r)", self.element_name, self.get_id(), path, text)
            return None

    def get_text_as_int(self, path: str) -> Optional[int]:
        value = self.get_text_as_float(path)
        return None if value is None else int(value)

    def get_text_as_bool(self, path: str) -> Optional[bool]:
        text = self.get_text(path)
        if text is None:
            return None
        return text.lower() == "true"

    def get_text_as_date(self, path: str) -> Optional[date]:
        text = self.get_text(path)
        return None if text is None else datetime.strptime(text[:10], "%Y-%m-%d").date()

    def get_text_as_datetime(self, path: str) -> Optional[datetime]:
        text = self.get_text(path)
        return None if text is None else datetime.strptime(text[:19], TIMESTAMP_FORMAT)

    def get_attribute_for_element(self, path: str, attribute: str) -> Optional[str]:
        child = self.find(path)
        return None if child is None else child.get(attribute)

    def get_idrefs(self, name: str) -> List[str]:
        return [el.get("IDref") for el in self.findall(f".//{name}s/{name}") if el.get("IDref")]

    def get_linked_premises(self) -> Dict[str, List[str]]:
        linked: Dict[str, List[str]] = {}
        premises = self.find("LinkedPremises")
        if premises is None:
            return linked
        for kind in premises:
            linked[local_name(kind)] = [
                el.get("IDref") for el in kind.iter() if el.get("IDref") is not None
            ]
        return linked

    # -- mutation
    def set_text(self, path: str, value) -> bool:
        child = self.find(path)
        if child is None:
            return False
        child.text = _to_text(value)
        return True

    def set_or_create(self, name: str, value, override: bool = True) -> etree._Element:
        child = self.find(name)
        if child is None:
            return sub_element(self.element, name, self.ns, _to_text(value))
        if override:
            child.text = _to_text(value)
        return child

    def get_or_create(self, path: str) -> etree._Element:
        node = self.element
        for name in path.split("/"):
            child = node.find(qualify(name, self.ns))
            node = child if child is not None else sub_element(node, name, self.ns)
        return node

    def add_child(self, name: str, text=None, attrib: Optional[Dict[str, str]] = None) -> etree._Element:
        return sub_element(self.element, name, self.ns, None if text is None else _to_text(text), attrib)

    def remove_children(self, path: str) -> int:
        children = self.findall(path)
        for child in children:
            remove(child)
        return len(children)

    # -- UserDefinedFields
    def get_user_defined_fields(self) -> Dict[str, Optional[str]]:
        fields: Dict[str, Optional[str]] = {}
        for udf in self.findall("UserDefinedFields/UserDefinedField"):
            name = udf.find(qualify("FieldName", self.ns))
            value = udf.find(qualify("FieldValue", self.ns))
            if name is not None and name.text:
                fields[name.text.strip()] = None if value is None else value.text
        return fields

    def set_user_defined_field(self, name: str, value) -> None:
        container = self.find("UserDefinedFields")
        if container is None:
            container = self.add_child("UserDefinedFields")
        for udf in container.findall(qualify("UserDefinedField", self.ns)):
            field_name = udf.find(qualify("FieldName", self.ns))
            if field_name is not None and field_name.text == name:
                field_value = udf.find(qualify("FieldValue", self.ns))
                if field_value is None:
                    field_value = sub_element(udf, "FieldValue", self.ns)
                field_value.text = _to_text(value)
                return
        udf = sub_element(container, "UserDefinedField", self.ns)
        sub_element(udf, "FieldName", self.ns, name)
        sub_element(udf, "FieldValue", self.ns, _to_text(value))

    def remove_user_defined_fields(self, prefix: str) -> int:
        removed = 0
        container = self.find("UserDefinedFields")
        if container is None:
            return removed
        for udf in container.findall(qualify("UserDefinedField", self.ns)):
            field_name = udf.find(qualify("FieldName", self.ns))
            if field_name is not None and (field_name.text or "").startswith(prefix):
                container.remove(udf)
                removed += 1
        if len(container) == 0:
            remove(container)
        return removed


def _to_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, datetime):
        return value.strftime(TIMESTAMP_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class ResourceUse(XmlElement):
    element_name = "ResourceUse"

    @property
    def energy_resource(self) -> Optional[str]:
        return self.get_text("EnergyResource")

    @property
    def end_use(self) -> Optional[str]:
        return self.get_text("EndUse")

    @property
    def resource_units(self) -> Optional[str]:
        return self.get_text("ResourceUnits")


class AllResourceTotal(XmlElement):
    element_name = "AllResourceTotal"

    @property
    def end_use(self) -> Optional[str]:
        return self.get_text("EndUse")

    def site_energy_use(self) -> Optional[float]:
        return self.get_text_as_float("SiteEnergyUse")

    def site_energy_use_intensity(self) -> Optional[float]:
        return self.get_text_as_float("SiteEnergyUseIntensity")


class TimeSeries(XmlElement):
    element_name = "TimeSeries"

    def set_monthly_timestamps(self, start) -> None:
        """Cover one calendar month: the end is the last minute of the month, not the next month's start."""
        start = pd.Timestamp(start)
        end = start + pd.DateOffset(months=1) - pd.Timedelta(minutes=1)
        self.set_or_create("StartTimestamp", start.strftime(TIMESTAMP_FORMAT))
        self.set_or_create("EndTimestamp", end.strftime(TIMESTAMP_FORMAT))

    @property
    def start_timestamp(self) -> Optional[str]:
        return self.get_text("StartTimestamp")

    @property
    def end_timestamp(self) -> Optional[str]:
        return self.get_text("EndTimestamp")

    @property
    def reading(self) -> Optional[float]:
        return self.get_text_as_float("IntervalReading")

    @property
    def resource_use_id(self) -> Optional[str]:
        return self.get_attribute_for_element("ResourceUseID", "IDref")


class AuditDate(XmlElement):
    element_name = "AuditDate"

    @property
    def audit_date(self) -> Optional[date]:
        return self.get_text_as_date("Date")


class Utility(XmlElement):
    element_name = "Utility"

    def get_utility_meter_numbers(self) -> List[str]:
        return [el.text.strip() for el in self.findall("UtilityMeterNumbers/UtilityMeterNumber") if el.text]

    def get_utility_name(self) -> Optional[str]:
        return self.get_text("UtilityName")


class Measure(XmlElement):
    element_name = "Measure"

    def get_name(self) -> Optional[str]:
        return self.get_text(".//MeasureName")

    @property
    def system_category_affected(self) -> Optional[str]:
        return self.get_text("SystemCategoryAffected")

    @property
    def custom_module_name(self) -> Optional[str]:
        custom = self.get_text("CustomMeasureName")
        if custom:
            return custom
        fields = self.get_user_defined_fields()
        return fields.get("OpenStudioMeasureName") or fields.get("ModuleName")

    @property
    def first_cost(self) -> Optional[float]:
        return self.get_text_as_float("MeasureTotalFirstCost")

    @property
    def annual_savings_cost(self) -> Optional[float]:
        return self.get_text_as_float("AnnualSavingsCost")
