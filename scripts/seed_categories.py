#!/usr/bin/env python3
"""
Category seeding script for the catalog.

Creates the keyword categories used to auto-categorize imported listings,
plus the catch-all category listings fall back to when no keyword matches.
Existing categories (matched by slug) are left alone; missing keywords are
added to them.

Usage:
    python scripts/seed_categories.py           # seed
    python scripts/seed_categories.py --list    # show categories and keywords
    python scripts/seed_categories.py --clear   # delete all categories
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload

from catalog_sync.catalog.categorizer import DEFAULT_CATEGORY_KEYWORDS, FALLBACK_SLUG
from catalog_sync.db.models import Category, CategoryKeyword
from catalog_sync.db.session import AsyncSessionLocal

CATEGORY_NAMES = {
    "zaagmachines": "Zaagmachines",
    "elektrisch-gereedschap": "Elektrisch gereedschap",
    "handgereedschap": "Handgereedschap",
    "machines": "Machines",
    "bouw-verbouw": "Bouw & verbouw",
    "accessoires": "Accessoires",
    "tuin-buiten": "Tuin & buiten",
    FALLBACK_SLUG: "Overig",
}


async def seed_categories(session_factory=AsyncSessionLocal) -> tuple[int, int]:
    """Seed categories and keywords.

    Returns:
        (categories added, keywords added)
    """
    added_categories = 0
    added_keywords = 0
    table = list(DEFAULT_CATEGORY_KEYWORDS.items()) + [(FALLBACK_SLUG, [])]

    async with session_factory() as db:
        for sort_order, (slug, keywords) in enumerate(table):
            query = (
                select(Category)
                .options(selectinload(Category.keywords))
                .where(Category.slug == slug)
            )
            category = (await db.execute(query)).scalar_one_or_none()

            if category is None:
                category = Category(
                    name=CATEGORY_NAMES.get(slug, slug),
                    slug=slug,
                    sort_order=sort_order,
                    keywords=[],
                )
                db.add(category)
                added_categories += 1
                print(f"  [ADD] {slug}")
            else:
                print(f"  [SKIP] {slug} (already exists)")

            known = {kw.keyword for kw in category.keywords}
            for position, keyword in enumerate(keywords):
                if keyword in known:
                    continue
                category.keywords.append(CategoryKeyword(keyword=keyword, position=position))
                added_keywords += 1

        await db.commit()

    print("\nSeeding complete!")
    print(f"  - Categories added: {added_categories}")
    print(f"  - Keywords added: {added_keywords}")
    return added_categories, added_keywords


async def list_categories(session_factory=AsyncSessionLocal):
    """List all categories with their keywords."""
    async with session_factory() as db:
        query = (
            select(Category)
            .options(selectinload(Category.keywords))
            .order_by(Category.sort_order, Category.id)
        )
        categories = (await db.execute(query)).scalars().all()

    if not categories:
        print("No categories found.")
        return

    print(f"\nCategories ({len(categories)} total):\n")
    for category in categories:
        keywords = ", ".join(kw.keyword for kw in category.keywords) or "-"
        print(f"  [{category.sort_order}] {category.name} ({category.slug}): {keywords}")


async def clear_categories(session_factory=AsyncSessionLocal):
    """Delete all categories (products keep existing with no category)."""
    async with session_factory() as db:
        await db.execute(delete(CategoryKeyword))
        await db.execute(delete(Category))
        await db.commit()
    print("All categories cleared.")


if __name__ == "__main__":
    try:
        if len(sys.argv) > 1 and sys.argv[1] == "--list":
            asyncio.run(list_categories())
        elif len(sys.argv) > 1 and sys.argv[1] == "--clear":
            asyncio.run(clear_categories())
        elif len(sys.argv) > 1:
            print(f"Unknown option: {sys.argv[1]}")
            print(__doc__)
            sys.exit(2)
        else:
            asyncio.run(seed_categories())
    except Exception as e:
        print(f"\nError: {e}")
        print("Make sure the catalog database is running and CATALOG_ENDPOINT is set.")
        sys.exit(1)
