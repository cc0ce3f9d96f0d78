"""Job history persistence models and initialisation."""

from .db_models import Base, JobHistoryModel

__all__ = ["Base", "JobHistoryModel"]
