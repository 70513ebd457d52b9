#!/usr/bin/env python3
"""Seed the catalogue with sample products."""
import sys
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from app import create_app  # noqa: E402
from app.extensions import db  # noqa: E402
from app.models import Product  # noqa: E402
from app.storage import Storage  # noqa: E402

SAMPLE_PRODUCTS = [
    {
        "title": "Premium Hair Shampoo",
        "description": "Moisturizing shampoo with natural ingredients",
        "price_cents": 1800,
        "category": "Hair Care",
    },
    {
        "title": "Deep Conditioning Mask",
        "description": "Intensive hair repair treatment",
        "price_cents": 3200,
        "category": "Hair Care",
    },
    {
        "title": "Leave-in Conditioner",
        "description": "Lightweight conditioning spray",
        "price_cents": 1200,
        "category": "Hair Care",
    },
    {
        "title": "Hair Growth Oil",
        "description": "Promotes hair growth and scalp health",
        "price_cents": 2500,
        "category": "Hair Care",
    },
    {
        "title": "Styling Gel",
        "description": "Strong hold styling gel for all hair types",
        "price_cents": 1000,
        "category": "Styling",
    },
]


def seed_products():
    """Add the sample products that are not in the catalogue yet."""
    app = create_app()

    with app.app_context():
        storage = Storage(db.session)
        existing_titles = {title for (title,) in db.session.query(Product.title)}

        added = 0
        for product_data in SAMPLE_PRODUCTS:
            if product_data["title"] in existing_titles:
                print(f"Skipping {product_data['title']}: already in the catalogue")
                continue
            storage.create_product(product_data)
            added += 1
            print(f"  Added: {product_data['title']} (${product_data['price_cents'] / 100:.2f})")

        print(f"\nSeeded {added} products.")
        print(f"Total products in database: {Product.query.count()}")


if __name__ == "__main__":
    seed_products()
