"""
Background Jobs for Decido.

This module contains scheduled jobs:
- closure_cron: Periodic stage transitions and decision closures
"""

from .closure_cron import run_closure_job

__all__ = ["run_closure_job"]
