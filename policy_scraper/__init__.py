"""
District Policy Extraction Pipeline

Discovers a school district's published policies on BoardDocs, table-linked
site-builder pages or accordion PDF listings, extracts each policy into a
structured record and exports the records as CSV.
"""

__version__ = "0.1.0"
__author__ = "Challenge Team"
__all__ = [
    "config",
    "csv_export",
    "detection",
    "errors",
    "fetcher",
    "html_text",
    "models",
    "pdf_text",
    "pipeline",
    "platforms",
    "scheduler",
    "utils",
]
