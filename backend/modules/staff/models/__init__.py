from .staff_models import Company, Employee

__all__ = ["Company", "Employee"]
