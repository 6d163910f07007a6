"""
tracking — Tourists and their reported positions.

Sub-modules:
    models  — Tourist, EmergencyContact, LocationSample, Telemetry
"""
