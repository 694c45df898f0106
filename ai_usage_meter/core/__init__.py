"""
Core modules for AI Usage Meter.

This package contains pricing, cost attribution, filtering and the
aggregation engine behind every report.
"""
