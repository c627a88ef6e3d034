"""Filesystem watching and rebuild coordination."""

from .classify import Change, ChangeClassifier, ChangeKind
from .service import Phase, RebuildBatch, RebuildCoordinator

__all__ = [
    "Change",
    "ChangeClassifier",
    "ChangeKind",
    "Phase",
    "RebuildBatch",
    "RebuildCoordinator",
]
