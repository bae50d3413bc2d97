# ========================
# npiscore/utils/__init__.py
# ========================

"""
Utilities Package

Common utilities and helper functions for the claims pipeline.
"""

from .config import Config
from .performance_monitor import monitor_performance, PerformanceMonitor
from .logging_setup import setup_logging
from .data_generator import DataGenerator
from .retry import with_retry

__all__ = [
    'Config',
    'monitor_performance',
    'PerformanceMonitor',
    'setup_logging',
    'DataGenerator',
    'with_retry'
]
