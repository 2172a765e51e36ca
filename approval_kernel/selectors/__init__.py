"""Read-only query selectors for approval data."""

from approval_kernel.selectors.base import BaseSelector
from approval_kernel.selectors.request_selector import PendingApproval, RequestSelector

__all__ = [
    "BaseSelector",
    "PendingApproval",
    "RequestSelector",
]
