"""Scenario workflow assembly, dispatch and results aggregation for building energy audits."""

from .errors import Diagnostics, StructuralError
from .facility import AuditDocument, FacilityAttributes, load_document, parse_document

__version__ = "0.1.0"
