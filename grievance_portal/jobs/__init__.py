"""
Background Jobs for the Grievance Portal.

This module contains scheduled and background jobs:
- notification_dispatch: Email sweep for pending notifications
"""

from .notification_dispatch import run_dispatch_job

__all__ = ["run_dispatch_job"]
