from cv_pipeline.models.base import Base
from cv_pipeline.models.candidate import Candidate
from cv_pipeline.models.cv_history import CvHistory

__all__ = ["Base", "Candidate", "CvHistory"]
