"""
CCanywhere

Build orchestration for a shared working directory: file lock, diff,
deployment trigger, tests and multi-channel notifications.
"""

__version__ = "0.1.0"

USER_AGENT = f"CCanywhere/{__version__}"

__all__ = ["__version__", "USER_AGENT"]
