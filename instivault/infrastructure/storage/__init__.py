"""
Document storage backends.
"""
from instivault.infrastructure.storage.local import LocalDocumentStorage

__all__ = ["LocalDocumentStorage"]
