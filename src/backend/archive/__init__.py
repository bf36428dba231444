"""
Media export/import and JSON backups.

Provides:
- ArchiveService: zip export and re-runnable import (service.py)
- ConflictChannel: interactive conflict decisions (conflicts.py)
- ImportJobRegistry: background imports per owner (jobs.py)
- BackupService: JSON backup/restore (backup.py)
"""

from .backup import BackupService
from .conflicts import ConflictChannel, ConflictDetected, ConflictPolicy, fixed_policy
from .jobs import ImportConflictError, ImportJob, ImportJobRegistry
from .models import (
    ArchiveManifest,
    Backup,
    BackupKind,
    ImportSummary,
    ManifestEntry,
    Resolution,
    RestoreSummary,
)
from .service import ArchiveService

__all__ = [
    "BackupService",
    "ConflictChannel",
    "ConflictDetected",
    "ConflictPolicy",
    "fixed_policy",
    "ImportConflictError",
    "ImportJob",
    "ImportJobRegistry",
    "ArchiveManifest",
    "Backup",
    "BackupKind",
    "ImportSummary",
    "ManifestEntry",
    "Resolution",
    "RestoreSummary",
    "ArchiveService",
]
