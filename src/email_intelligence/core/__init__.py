"""Core configuration, constants and logging.

Import what you need from `email_intelligence.core.config` and
`email_intelligence.core.constants` to avoid heavy side effects at import time.
"""

__all__ = ["config", "constants", "logging"]
