"""
telemetry — Machine state model, parameter registry and live state store.

TelemetryState is an immutable snapshot; TelemetryStore owns the one live
record and publishes replacements atomically. The CSV connector turns
exported controller readings into partial states for batch import.
"""
