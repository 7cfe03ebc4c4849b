"""Page driver capability and its Playwright implementation."""

from .protocol import PageDriver

__all__ = ["PageDriver"]
