"""Poolmon: pool health-check controller for a mail director.

Author: Poolmon Team
Version: 1.0.0
"""

__version__ = "1.0.0"
