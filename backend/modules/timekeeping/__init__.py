"""
Timekeeping module.

Records clock-in/clock-out sessions with ordered breaks and derives the
regular/bonus hour split that payroll consumes.
"""
