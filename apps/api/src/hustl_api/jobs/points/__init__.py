"""Points job exports."""

from .consistency import run_points_consistency_audit  # noqa: F401
from .reservations import expire_points_reservations  # noqa: F401

__all__ = [
    "expire_points_reservations",
    "run_points_consistency_audit",
]
