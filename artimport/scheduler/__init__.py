"""Polling scheduler that drives import jobs one at a time."""

from artimport.scheduler.processor import JobProcessor

__all__ = ["JobProcessor"]
