from .base import LabDefinition, SubmissionPolicy

__all__ = ["LabDefinition", "SubmissionPolicy"]
