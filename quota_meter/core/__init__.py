"""
Core modules for Quota Meter.

This package contains the tier catalog, quota evaluation, usage
recording and usage summaries.
"""
