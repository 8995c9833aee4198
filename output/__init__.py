"""
output — Audit records and sinks.
"""
