"""
Face recognition attendance gate

This package implements the kiosk decision pipeline:
- Anti-spoofing gate (face size, detector confidence, centering)
- Identity matching by L2 distance against the enrolled roster
- Single-flight session control with per-person cooldown
- IN/OUT toggling against an append-only attendance ledger
- Feedback to an activity log and MQTT
"""

__version__ = "1.0.0"
