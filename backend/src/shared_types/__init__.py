"""
Shared type definitions for the scheduling backend.

This module contains dataclasses and types that are used across multiple services.
"""

from shared_types.availability import AvailabilityWindow, ConflictResult, ReminderTask, SweepResult

__all__ = ["AvailabilityWindow", "ConflictResult", "ReminderTask", "SweepResult"]
