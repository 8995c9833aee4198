"""
pipeline — Validation pipeline and request gateway.

The validator sequences semantic scan → physics fold → context check for one
command against one telemetry snapshot; the controller owns the live store,
commits authorized states by compare-and-swap and records every request.
"""
