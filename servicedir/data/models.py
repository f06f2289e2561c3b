"""
Data models for directory services.

These dataclasses are the canonical shape of a service, independent of
whether it came from Supabase, the durable cache, or the fallback dataset.
Fields the model does not know about are kept in ``metadata`` rather than
merged into the record.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from servicedir.utils.helpers import (
    generate_slug,
    parse_timestamp,
    safe_float,
    safe_int,
    safe_lower,
    safe_str,
)

PLACEHOLDER_IMAGE = "/images/placeholder-service.jpg"

# Categories the UI uses to mean "no category filter".
ALL_CATEGORIES = {"todas", "todos", "all"}

_KNOWN_FIELDS = {
    "id", "uid", "slug", "name", "description", "category", "categorySlug",
    "category_slug", "rating", "reviewCount", "review_count", "image", "images",
    "barrio", "address", "reference", "phone", "whatsapp", "email", "website",
    "location", "featured", "active", "userId", "user_id", "createdAt",
    "created_at", "updatedAt", "updated_at", "metadata",
}


@dataclass
class ServiceEntity:
    """A business listed in the directory."""
    id: str
    name: str
    description: str = ""
    category: str = ""
    category_slug: str = ""
    slug: str = ""
    rating: float = 0.0
    review_count: int = 0
    image: str = PLACEHOLDER_IMAGE
    images: List[str] = field(default_factory=list)
    barrio: Optional[str] = None
    address: Optional[str] = None
    reference: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    featured: bool = False
    active: bool = True
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, raw: Dict[str, Any], fallback_id: Optional[str] = None) -> "ServiceEntity":
        """
        Build from a raw repository row, filling the defaults the UI expects.

        Unknown columns land in metadata.
        """
        entity_id = safe_str(raw.get("id")) or safe_str(raw.get("uid")) or safe_str(fallback_id)
        category = raw.get("category")
        if isinstance(category, dict):
            category = category.get("name") or category.get("label")
        category = safe_str(category) or "Uncategorized"

        image = safe_str(raw.get("image")) or PLACEHOLDER_IMAGE
        images = raw.get("images") or [image]

        return cls(
            id=entity_id,
            name=safe_str(raw.get("name")) or "Unnamed service",
            description=safe_str(raw.get("description")) or "No description",
            category=category,
            category_slug=(
                safe_str(raw.get("categorySlug") or raw.get("category_slug"))
                or generate_slug(category)
                or "uncategorized"
            ),
            slug=safe_str(raw.get("slug")) or generate_slug(raw.get("name")) or entity_id,
            rating=safe_float(raw.get("rating")),
            review_count=safe_int(raw.get("reviewCount", raw.get("review_count"))),
            image=image,
            images=[safe_str(i) for i in images],
            barrio=raw.get("barrio"),
            address=raw.get("address"),
            reference=raw.get("reference"),
            phone=raw.get("phone"),
            whatsapp=raw.get("whatsapp"),
            email=raw.get("email"),
            website=raw.get("website"),
            featured=bool(raw.get("featured", False)),
            active=bool(raw.get("active", True)),
            user_id=raw.get("userId", raw.get("user_id")),
            created_at=parse_timestamp(raw.get("createdAt", raw.get("created_at"))),
            updated_at=parse_timestamp(raw.get("updatedAt", raw.get("updated_at"))),
            metadata={k: v for k, v in raw.items() if k not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "category_slug": self.category_slug,
            "slug": self.slug,
            "rating": self.rating,
            "review_count": self.review_count,
            "image": self.image,
            "images": list(self.images),
            "barrio": self.barrio,
            "address": self.address,
            "reference": self.reference,
            "phone": self.phone,
            "whatsapp": self.whatsapp,
            "email": self.email,
            "website": self.website,
            "featured": self.featured,
            "active": self.active,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceEntity":
        """Create from a dictionary produced by to_dict()."""
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            category=data.get("category", ""),
            category_slug=data.get("category_slug", ""),
            slug=data.get("slug", ""),
            rating=data.get("rating", 0.0),
            review_count=data.get("review_count", 0),
            image=data.get("image", PLACEHOLDER_IMAGE),
            images=data.get("images", []),
            barrio=data.get("barrio"),
            address=data.get("address"),
            reference=data.get("reference"),
            phone=data.get("phone"),
            whatsapp=data.get("whatsapp"),
            email=data.get("email"),
            website=data.get("website"),
            featured=data.get("featured", False),
            active=data.get("active", True),
            user_id=data.get("user_id"),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            metadata=data.get("metadata", {}),
        )


@dataclass(frozen=True)
class ServiceFilter:
    """Predicate over services, shared by the repository and the fallback dataset."""
    category: Optional[str] = None
    barrio: Optional[str] = None
    user_id: Optional[str] = None
    featured: Optional[bool] = None
    search: Optional[str] = None
    active_only: bool = True

    @property
    def effective_category(self) -> Optional[str]:
        """Category to filter on, or None for the 'all categories' pseudo-values."""
        if not self.category or safe_lower(self.category) in ALL_CATEGORIES:
            return None
        return self.category

    def matches(self, service: ServiceEntity) -> bool:
        if self.active_only and not service.active:
            return False
        category = self.effective_category
        if category and service.category != category:
            return False
        if self.barrio and service.barrio != self.barrio:
            return False
        if self.user_id and service.user_id != self.user_id:
            return False
        if self.featured and not service.featured:
            return False
        if self.search:
            term = safe_lower(self.search)
            haystacks = (service.name, service.description, service.category)
            if not any(term in safe_lower(h) for h in haystacks):
                return False
        return True

    def cache_fragment(self) -> str:
        """Stable, order-independent key fragment."""
        parts = [
            ("category", self.effective_category),
            ("barrio", self.barrio),
            ("user", self.user_id),
            ("featured", self.featured),
            ("search", safe_lower(self.search) or None),
            ("active", self.active_only),
        ]
        return ",".join(f"{k}={v}" for k, v in parts if v is not None)


# =============================================================================
# Durable payload codec
# =============================================================================

def encode_payload(value: Any) -> Any:
    """Turn a service or list of services into JSON-compatible data."""
    if isinstance(value, ServiceEntity):
        return {"type": "service", "data": value.to_dict()}
    if isinstance(value, list) and all(isinstance(v, ServiceEntity) for v in value):
        return {"type": "service_list", "data": [v.to_dict() for v in value]}
    return {"type": "raw", "data": value}


def decode_payload(payload: Any) -> Any:
    """Inverse of encode_payload(). Raises KeyError/TypeError on malformed input."""
    kind = payload["type"]
    if kind == "service":
        return ServiceEntity.from_dict(payload["data"])
    if kind == "service_list":
        return [ServiceEntity.from_dict(d) for d in payload["data"]]
    if kind == "raw":
        return payload["data"]
    raise KeyError(f"unknown payload type {kind!r}")
