"""Patient store factory and protocols."""

from __future__ import annotations

from typing import Optional

from ..config import CareflowConfig
from ..persistence import resolve_database_url
from .base import (
    MarkStore,
    MessageTemplate,
    PatientMark,
    RichMenu,
    RichMenuStore,
    TagStore,
    TemplateStore,
)
from .inmemory import InMemoryPatientStore
from .sqlite import SQLitePatientStore


def get_patient_store(
    database_url: Optional[str] = None, config: Optional[CareflowConfig] = None
):
    """Return the patient store for the configured database.

    Uses the same URL resolution as ``get_repository`` so patient tables live
    next to the workflow tables.
    """

    database_url = resolve_database_url(database_url, config)
    if not database_url:
        return InMemoryPatientStore()
    if database_url.startswith("sqlite://"):
        return SQLitePatientStore(database_url.replace("sqlite://", "", 1))
    if database_url.startswith("postgres://") or database_url.startswith("postgresql://"):
        from .postgres import PostgresPatientStore

        return PostgresPatientStore(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "TagStore",
    "MarkStore",
    "TemplateStore",
    "RichMenuStore",
    "MessageTemplate",
    "PatientMark",
    "RichMenu",
    "InMemoryPatientStore",
    "SQLitePatientStore",
    "get_patient_store",
]
