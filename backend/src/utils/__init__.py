"""
Utility modules for the scheduling service.

This package contains shared helpers used across the application, including
datetime and timezone handling, interval arithmetic, and booking locks.
"""

from utils.interval_utils import intervals_overlap, merge_intervals, subtract_intervals

__all__ = ['intervals_overlap', 'merge_intervals', 'subtract_intervals']
