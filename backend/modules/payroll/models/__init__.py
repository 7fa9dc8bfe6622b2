from .payment_models import Payment, PaymentTimeEntry

__all__ = ["Payment", "PaymentTimeEntry"]
