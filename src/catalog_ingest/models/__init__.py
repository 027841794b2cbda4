"""Database models for catalog ingest."""

from catalog_ingest.models.base import Base
from catalog_ingest.models.enums import (
    DecisionAction,
    EntityKind,
    MatchBand,
    PendingStatus,
    SubmissionStatus,
)
from catalog_ingest.models.manufacturer import Manufacturer
from catalog_ingest.models.material import Material
from catalog_ingest.models.pending_entity import PendingEntity
from catalog_ingest.models.project import Project
from catalog_ingest.models.project_material import ProjectMaterial
from catalog_ingest.models.submission import Submission

__all__ = [
    "Base",
    "DecisionAction",
    "EntityKind",
    "Manufacturer",
    "MatchBand",
    "Material",
    "PendingEntity",
    "PendingStatus",
    "Project",
    "ProjectMaterial",
    "Submission",
    "SubmissionStatus",
]
