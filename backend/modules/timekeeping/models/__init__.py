from .time_entry_models import TimeEntry, TimeEntryBreak

__all__ = ["TimeEntry", "TimeEntryBreak"]
