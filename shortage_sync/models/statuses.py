"""
Status Enumerations
Report lifecycle states from the reports provider and the derived catalog status
"""

from enum import Enum


class ReportType(str, Enum):
    """Event report types"""
    shortage = "shortage"
    discontinuation = "discontinuation"


class ReportStatus(str, Enum):
    """
    Report statuses as published by the reports provider.

    Shortage lifecycle: active_confirmed, anticipated_shortage, avoided_shortage, resolved.
    Discontinuation lifecycle: to_be_discontinued, discontinued, reversed.
    """
    active_confirmed = "active_confirmed"  # Actual shortage
    anticipated_shortage = "anticipated_shortage"  # Expected soon
    avoided_shortage = "avoided_shortage"  # Anticipated, didn't happen
    resolved = "resolved"  # No longer in shortage
    to_be_discontinued = "to_be_discontinued"
    discontinued = "discontinued"
    reversed = "reversed"  # Discontinuation called off


class CatalogStatus(str, Enum):
    """Derived current status of a catalog entry"""
    available = "available"
    in_shortage = "in_shortage"
    anticipated = "anticipated"
    to_be_discontinued = "to_be_discontinued"
    discontinued = "discontinued"


# Statuses that keep a report on the provider's "active" listings
ACTIVE_REPORT_STATUSES = (
    ReportStatus.active_confirmed.value,
    ReportStatus.anticipated_shortage.value,
    ReportStatus.to_be_discontinued.value,
)
