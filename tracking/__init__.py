"""Function-call tracking used across the automation packages."""

from .runtime import snapshot, t, tracking_file

__all__ = ["t", "snapshot", "tracking_file"]
