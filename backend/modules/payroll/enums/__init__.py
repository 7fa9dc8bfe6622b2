from .payroll_enums import PaymentStatus, PaymentEvent, CalculationOutcome

__all__ = ["PaymentStatus", "PaymentEvent", "CalculationOutcome"]
