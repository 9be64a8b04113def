"""Document repositories paperpilot reads from and writes to.

Adapters:
- Paperless-ngx (REST API)
"""

from .base import Document, DocumentSource, DocumentSuggestion, remove_tags
from .paperless import PaperlessClient

__all__ = [
    "Document",
    "DocumentSource",
    "DocumentSuggestion",
    "PaperlessClient",
    "remove_tags",
]
