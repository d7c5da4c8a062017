"""Value types shared by the scraping and reconciliation stages."""

from dataclasses import dataclass, field
from typing import Optional

# Title used when no strategy resolved one; such listings never reach the catalog
UNKNOWN_TITLE = "Onbekend"


@dataclass(frozen=True)
class Listing:
    """One scraped offer, keyed by its canonical source URL."""

    title: str
    price: str
    url: str
    image_url: Optional[str] = None
    description: Optional[str] = None

    @property
    def has_title(self) -> bool:
        return bool(self.title) and self.title != UNKNOWN_TITLE

    def to_dict(self) -> dict:
        """Wire shape consumed by the admin import screen."""
        return {
            "title": self.title,
            "price": self.price,
            "url": self.url,
            "imageURL": self.image_url,
            "description": self.description,
        }


@dataclass(frozen=True)
class Category:
    """Catalog category with its keyword list (read-only here)."""

    id: int
    name: str
    slug: str
    keywords: tuple[str, ...] = field(default_factory=tuple)
