"""DNA barcode gap analysis for South Pacific invasive-species checklists."""

__version__ = '0.3.0'
