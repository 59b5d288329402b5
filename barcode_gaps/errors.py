"""
Exceptions raised across the barcode gap workflow.

Per-row and per-taxon problems (MalformedRecord, SourceUnavailable for a
single taxon, CacheCorrupt) are absorbed where they occur and logged.
ConfigurationError aborts the run. ChecklistUnavailable skips one variant, and
aborts the run only when no variant can be built.
"""


class BarcodeGapError(Exception):
    """Base class for all workflow errors."""


class SourceUnavailable(BarcodeGapError):
    """A checklist source or the barcode database could not be reached."""


class MalformedRecord(BarcodeGapError):
    """A checklist row is missing its identity fields."""


class CacheCorrupt(BarcodeGapError):
    """A cached payload could not be decoded."""


class ConfigurationError(BarcodeGapError):
    """The run configuration cannot produce meaningful output."""


class ChecklistUnavailable(BarcodeGapError):
    """Every source of a checklist variant failed."""
