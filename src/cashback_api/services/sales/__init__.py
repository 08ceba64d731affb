"""Sale lifecycle service exports."""

from .lifecycle import SaleCompletion, SaleLifecycleService  # noqa: F401
