# backend/modules/payroll/__init__.py

"""
Payroll module.

Turns approved time entries into per-period payments and owns the payment
lifecycle:
- Payroll calculation with a rate snapshot per payment
- Payment state machine with compare-and-set transitions
- Approval, bulk approval and cancellation
- Scheduled payroll runs per payment cycle
"""
