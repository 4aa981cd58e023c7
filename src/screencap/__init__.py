"""screencap: full-screen capture for Wayland desktops.

A capture pipeline with:
- Screen recording and notification permission probing
- Single or multi-display still capture
- Collision-free, atomic PNG saves with directory fallback
- CLI and library interfaces
"""

__version__ = "1.0.0"
