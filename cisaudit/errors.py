"""
Exception hierarchy for fact resolution, rule loading and configuration
"""


class CisAuditError(Exception):
    """Base class for all cisaudit errors"""


class FactError(CisAuditError):
    """A host fact could not be gathered: command missing or timed out, file unreadable, document unparsable"""


class PredicateError(CisAuditError):
    """An operator cannot be applied to the resolved fact (type mismatch)"""


class ControlLoadError(CisAuditError):
    """Control definitions are malformed; fatal before any evaluation starts"""

    def __init__(self, message: str, source: str = None):
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


class ConfigError(CisAuditError):
    """The audit configuration file is missing or invalid"""
