"""
shopwarden package root.

Import concrete modules from subpackages:
- shopwarden.core
- shopwarden.autonomy
- shopwarden.lane
- shopwarden.healing
- shopwarden.scheduling
- shopwarden.pricing
- shopwarden.loop
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
