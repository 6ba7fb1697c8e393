"""
Interview Core Package

The navigation and session-data engine behind a protocol-driven interview.

ARCHITECTURAL GUARANTEE:
------------------------
This package contains ZERO knowledge of:
    - Rendering or animation
    - Drag-and-drop or canvas layout
    - Cryptography (encryption is delegated to a supplied callable)
    - Protocol schema validation

This package decides WHERE the participant is, WHAT data has been
collected, and in WHICH order that data is presented.

Everything visual happens in external layers.
"""

__version__ = "0.1.0"
