from .staff_enums import PaymentCycle

__all__ = ["PaymentCycle"]
