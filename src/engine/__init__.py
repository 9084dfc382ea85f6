"""Pure derivation engines: aggregation, classification, report data."""

from src.engine.aggregation import aggregate, coerce_records, in_period
from src.engine.classification import (
    DEFAULT_CATEGORIES,
    Category,
    CategoryClassifier,
    score_category,
)
from src.engine.reports import (
    ReportData,
    ReportSections,
    build_report_data,
)

__all__ = [
    "aggregate",
    "coerce_records",
    "in_period",
    "DEFAULT_CATEGORIES",
    "Category",
    "CategoryClassifier",
    "score_category",
    "ReportData",
    "ReportSections",
    "build_report_data",
]
