"""
Central constants for the EDMS core.
"""
from __future__ import annotations

# Permission codes granted by the authorization service.
DOCUMENTS_READ = "documents.read"
DOCUMENTS_LIST = "documents.list"
DOCUMENTS_SELECT = "documents.select"
DOCUMENTS_CREATE = "documents.create"
DOCUMENTS_UPDATE = "documents.update"
DOCUMENTS_DELETE = "documents.delete"

WORKFLOWS_LIST = "workflows.list"
WORKFLOWS_CREATE = "workflows.create"
WORKFLOWS_UPDATE = "workflows.update"

TRANSMITTALS_READ = "transmittals.read"
TRANSMITTALS_LIST = "transmittals.list"
TRANSMITTALS_CREATE = "transmittals.create"
TRANSMITTALS_UPDATE = "transmittals.update"

SCANNED_FILES_READ = "scanned_files.read"
SCANNED_FILES_LIST = "scanned_files.list"
SCANNED_FILES_CREATE = "scanned_files.create"
SCANNED_FILES_UPDATE = "scanned_files.update"
SCANNED_FILES_DELETE = "scanned_files.delete"

ALL_PERMISSIONS = frozenset(
    {
        DOCUMENTS_READ,
        DOCUMENTS_LIST,
        DOCUMENTS_SELECT,
        DOCUMENTS_CREATE,
        DOCUMENTS_UPDATE,
        DOCUMENTS_DELETE,
        WORKFLOWS_LIST,
        WORKFLOWS_CREATE,
        WORKFLOWS_UPDATE,
        TRANSMITTALS_READ,
        TRANSMITTALS_LIST,
        TRANSMITTALS_CREATE,
        TRANSMITTALS_UPDATE,
        SCANNED_FILES_READ,
        SCANNED_FILES_LIST,
        SCANNED_FILES_CREATE,
        SCANNED_FILES_UPDATE,
        SCANNED_FILES_DELETE,
    }
)

# Sequence names in code_sequences
TRANSMITTAL_SEQUENCE = "transmittal"
