"""Kernel utilities."""

from taxflow_kernel.utils.timeouts import call_with_timeout

__all__ = ["call_with_timeout"]
