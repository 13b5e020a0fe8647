"""
Seed a demo catalog and, optionally, an admin account.

    python seed.py

Categories and products are matched by name, so re-running only adds what is
missing. Set ADMIN_EMAIL / ADMIN_PASSWORD to create (or promote) an admin.
"""

import logging
import os

from auth import pwd_context
from catalog import CategoryStore, ProductStore
from credential_store import UserStore
from database import db, ensure_indexes

logger = logging.getLogger("storefront.seed")

CATEGORIES = [
    {"name": "Premium Perfumes", "description": "Luxury designer fragrances from world-renowned brands"},
    {"name": "Traditional Attar", "description": "Oil-based fragrances crafted with the finest ingredients"},
    {"name": "Body Sprays", "description": "Fresh and long-lasting body mists for everyday wear"},
    {"name": "Gift Sets", "description": "Curated fragrance gift sets for special occasions"},
]

PRODUCTS = [
    ("Premium Perfumes", {"name": "Elegant Rose Essence", "brand": "Luxury Fragrances",
                          "description": "Rose extracts with notes of jasmine and vanilla",
                          "price": "8999.00", "rating": 5, "stock": 50}),
    ("Premium Perfumes", {"name": "Midnight Oud", "brand": "Premium Collection",
                          "description": "Rich oud with hints of amber and sandalwood",
                          "price": "12000.00", "rating": 5, "stock": 30}),
    ("Traditional Attar", {"name": "Royal Amber Attar", "brand": "Heritage Oils",
                           "description": "Warm amber attar in a concentrated oil base",
                           "price": "4500.00", "rating": 4, "stock": 40}),
    ("Body Sprays", {"name": "Ocean Breeze Mist", "brand": "Fresh Collection",
                     "description": "Light aquatic body spray for daily wear",
                     "price": "1800.00", "rating": 4, "stock": 120}),
    ("Gift Sets", {"name": "Discovery Gift Box", "brand": "Luxury Fragrances",
                   "description": "Five miniature fragrances in a keepsake box",
                   "price": "6500.00", "rating": 5, "stock": 25}),
]


def seed(database=db):
    ensure_indexes(database)
    categories = CategoryStore(database)
    products = ProductStore(database)

    category_ids = {}
    for data in CATEGORIES:
        existing = database["category"].find_one({"name": data["name"]})
        category = existing or categories.create({
            **data, "productCount": sum(1 for c, _ in PRODUCTS if c == data["name"]),
        })
        category_ids[data["name"]] = str(category["_id"])

    created = 0
    for category_name, data in PRODUCTS:
        if database["product"].find_one({"name": data["name"]}):
            continue
        products.create({**data, "categoryId": category_ids[category_name]})
        created += 1
    logger.info("Seeded %d categories, %d new products", len(category_ids), created)

    admin_email = os.getenv("ADMIN_EMAIL")
    admin_password = os.getenv("ADMIN_PASSWORD")
    if admin_email and admin_password:
        users = UserStore(database)
        admin = users.get_by_email(admin_email)
        if admin is None:
            users.create(admin_email, "admin", password_hash=pwd_context.hash(admin_password), is_admin=True)
            logger.info("Created admin account %s", admin_email)
        else:
            users.update(str(admin["_id"]), {"isAdmin": "true"})
            logger.info("Promoted %s to admin", admin_email)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    seed()
