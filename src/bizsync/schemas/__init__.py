"""
Document schemas.

Defines the collection schemas registered with the Local Store and the
typed Business / Article entities.
"""

from .documents import (
    ARTICLE_SCHEMA,
    BUSINESS_SCHEMA,
    SCHEMAS,
    Article,
    Business,
    CollectionSchema,
    FieldSpec,
)

__all__ = [
    "ARTICLE_SCHEMA",
    "BUSINESS_SCHEMA",
    "SCHEMAS",
    "Article",
    "Business",
    "CollectionSchema",
    "FieldSpec",
]
