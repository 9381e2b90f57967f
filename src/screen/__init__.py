"""
Screen geometry: virtual-desktop bounds and absolute pointer coordinates.
"""

from .mapper import ABSOLUTE_MAX, Rect, VirtualDesktop, to_absolute_virtual

__all__ = ["ABSOLUTE_MAX", "Rect", "VirtualDesktop", "to_absolute_virtual"]
