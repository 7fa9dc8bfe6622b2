from .timekeeping_enums import TimeEntryStatus, BreakCategory

__all__ = ["TimeEntryStatus", "BreakCategory"]
