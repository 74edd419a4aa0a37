from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from lxml import etree

BUILDINGSYNC_NS = "http://buildingsync.net/schemas/bedes-auc/2019"
DEFAULT_PREFIX = "auc"


def qualify(path: str, ns: Optional[str]) -> str:
    """Turn ``Scenarios/Scenario`` into a Clark-notation ElementPath for ``ns``."""
    if not ns:
        return path
    parts = []
    for segment in path.split("/"):
        if segment in ("", ".", "..", "*") or segment.startswith("{"):
            parts.append(segment)
        else:
            parts.append(f"{{{ns}}}{segment}")
    return "/".join(parts)


def tag(name: str, ns: Optional[str]) -> str:
    return f"{{{ns}}}{name}" if ns else name


def local_name(element: etree._Element) -> str:
    return etree.QName(element).localname


def namespace_of(element: etree._Element) -> Optional[str]:
    return etree.QName(element).namespace


def sub_element(
    parent: etree._Element,
    name: str,
    ns: Optional[str],
    text: Optional[str] = None,
    attrib: Optional[Dict[str, str]] = None,
) -> etree._Element:
    child = etree.SubElement(parent, tag(name, ns), attrib=attrib or {})
    if text is not None:
        child.text = str(text)
    return child


def insert_after(anchor: etree._Element, element: etree._Element) -> etree._Element:
    anchor.addnext(element)
    return element


def remove(element: etree._Element) -> None:
    parent = element.getparent()
    if parent is not None:
        parent.remove(element)


def format_number(value: float) -> str:
    """Plain decimal notation for xs:decimal fields, never an exponent."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return format(Decimal(repr(value)), "f")


def read_xml(path: Path) -> etree._ElementTree:
    parser = etree.XMLParser(remove_blank_text=True)
    return etree.parse(str(path), parser)


def parse_xml(text: str | bytes) -> etree._ElementTree:
    parser = etree.XMLParser(remove_blank_text=True)
    if isinstance(text, str):
        text = text.encode("utf-8")
    return etree.ElementTree(etree.fromstring(text, parser))


def write_xml(tree: etree._ElementTree, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tree.write(str(path), pretty_print=True, xml_declaration=True, encoding="UTF-8")
