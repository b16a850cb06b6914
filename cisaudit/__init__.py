"""
cisaudit - declarative compliance rule evaluation for container hosts
"""

__version__ = "0.1.0"
