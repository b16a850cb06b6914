"""
Reporting and output formatting
"""

from .console import ConsoleReporter
from .json_reporter import JSONReporter
from .sarif import SARIFReporter

__all__ = ["ConsoleReporter", "JSONReporter", "SARIFReporter"]
