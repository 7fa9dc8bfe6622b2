from enum import Enum


class TimeEntryStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BreakCategory(str, Enum):
    MEAL = "meal"
    REST = "rest"
    PERSONAL = "personal"
    OTHER = "other"
