"""
KeyScope models, re-exported so `from keyscope.models import X` works everywhere.
"""

# Keyword store
from keyscope.models.keywords import Category, KeywordRecord

# Usage tracking
from keyscope.models.activity import UserSession, UserActivity

# Ops
from keyscope.models.ops import KeywordImportJob

__all__ = [
    "Category", "KeywordRecord",
    "UserSession", "UserActivity",
    "KeywordImportJob",
]
