"""
Collection schemas and typed entities.

Documents are plain JSON-compatible dicts inside the stores; Business and
Article are the typed views handed to callers.
"""

from dataclasses import asdict, dataclass
from typing import Any

from ..config import ARTICLES, BUSINESSES

# JSON type name -> accepted Python types
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
}


@dataclass(frozen=True)
class FieldSpec:
    """Type constraint for a single document field."""

    type: str
    max_length: int | None = None

    def check(self, name: str, value: Any) -> str | None:
        """Return an error message, or None if the value is acceptable."""
        accepted = _JSON_TYPES[self.type]
        # bool is an int subclass but never a valid number here
        if isinstance(value, bool) or not isinstance(value, accepted):
            return f"{name} must be of type {self.type}, got {type(value).__name__}"
        if self.max_length is not None and len(value) > self.max_length:
            return f"{name} exceeds max length {self.max_length}"
        return None


@dataclass(frozen=True)
class CollectionSchema:
    """Schema registered for one Local Store collection."""

    name: str
    primary_key: str
    properties: dict[str, FieldSpec]
    required: tuple[str, ...]
    version: int = 0
    description: str = ""

    def validate(self, doc: dict) -> list[str]:
        """Validate a document.

        Returns:
            List of validation errors (empty if valid)
        """
        if not isinstance(doc, dict):
            return [f"document must be an object, got {type(doc).__name__}"]

        errors: list[str] = []
        for key in self.required:
            if key not in doc or doc[key] is None:
                errors.append(f"{key} is required")

        for key, value in doc.items():
            spec = self.properties.get(key)
            if spec is None:
                errors.append(f"unknown field: {key}")
                continue
            if value is None:
                continue
            error = spec.check(key, value)
            if error:
                errors.append(error)

        pk = doc.get(self.primary_key)
        if isinstance(pk, str) and not pk:
            errors.append(f"{self.primary_key} must not be empty")

        return errors


BUSINESS_SCHEMA = CollectionSchema(
    name=BUSINESSES,
    primary_key="id",
    description="describes a business",
    properties={
        "id": FieldSpec("string", max_length=100),
        "name": FieldSpec("string"),
    },
    required=("id", "name"),
)

ARTICLE_SCHEMA = CollectionSchema(
    name=ARTICLES,
    primary_key="id",
    description="describes an article",
    properties={
        "id": FieldSpec("string", max_length=100),
        "name": FieldSpec("string"),
        "qty": FieldSpec("integer"),
        "selling_price": FieldSpec("number"),
        "business_id": FieldSpec("string"),
    },
    required=("id", "name", "qty", "selling_price", "business_id"),
)

SCHEMAS: dict[str, CollectionSchema] = {
    BUSINESSES: BUSINESS_SCHEMA,
    ARTICLES: ARTICLE_SCHEMA,
}


@dataclass
class Business:
    """A business owning zero or more articles."""

    id: str
    name: str

    @classmethod
    def from_document(cls, doc: dict) -> "Business":
        return cls(id=doc["id"], name=doc["name"])

    def to_document(self) -> dict:
        return asdict(self)


@dataclass
class Article:
    """An article sold by a business.

    business_id is a soft reference: an article may outlive its business.
    """

    id: str
    name: str
    qty: int
    selling_price: float
    business_id: str

    @classmethod
    def from_document(cls, doc: dict) -> "Article":
        return cls(
            id=doc["id"],
            name=doc["name"],
            qty=doc["qty"],
            selling_price=doc["selling_price"],
            business_id=doc["business_id"],
        )

    def to_document(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "qty": self.qty,
            "selling_price": self.selling_price,
            "business_id": self.business_id,
        }
