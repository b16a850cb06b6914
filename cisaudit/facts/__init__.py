"""
Fact gathering: subjects, fact models and the per-run fact provider
"""

from .models import ABSENT, Capability, FileFacts, FileType, Permissions, Principal, is_absent
from .provider import FactProvider
from .sources import CommandRunner, FileSystem
from .subjects import Subject, EachSubject

__all__ = [
    "ABSENT", "Capability", "FileFacts", "FileType", "Permissions", "Principal", "is_absent",
    "FactProvider", "CommandRunner", "FileSystem", "Subject", "EachSubject",
]
