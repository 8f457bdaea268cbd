"""
Data models
"""
from summarizer.models.document import Document, Summary
from summarizer.models.usage import UsageLog, UserBlock, UserProfile
from summarizer.models.model_version import ModelVersion
from summarizer.models.feedback import Feedback, RetrainingExample
from summarizer.models.cache_entry import SummaryCacheEntry
from summarizer.models.error_log import ErrorLog
from summarizer.models.alert import Alert

__all__ = [
    "Document",
    "Summary",
    "UsageLog",
    "UserBlock",
    "UserProfile",
    "ModelVersion",
    "Feedback",
    "RetrainingExample",
    "SummaryCacheEntry",
    "ErrorLog",
    "Alert",
]
