"""
physics — Anchor-table interpolation of correlated machine readings.
"""
