from .redactor import Redactor, RedactionResult, Finding, ScanReport, REDACTION_MARKER

__all__ = ["Redactor", "RedactionResult", "Finding", "ScanReport", "REDACTION_MARKER"]
