"""
Background Workers

This package contains the scheduler running the periodic acquisition jobs.
"""

from .scheduler import PeriodicTask, Scheduler, get_scheduler

__all__ = ['PeriodicTask', 'Scheduler', 'get_scheduler']
