from seed import CATEGORIES, PRODUCTS, seed


def test_seed_is_idempotent(mongo_db, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    seed(mongo_db)
    seed(mongo_db)

    assert mongo_db["category"].count_documents({}) == len(CATEGORIES)
    assert mongo_db["product"].count_documents({}) == len(PRODUCTS)
    oud = mongo_db["product"].find_one({"name": "Midnight Oud"})
    category = mongo_db["category"].find_one({"name": "Premium Perfumes"})
    assert oud["categoryId"] == str(category["_id"])
    assert mongo_db["user"].count_documents({}) == 0


def test_seed_promotes_existing_admin(mongo_db, monkeypatch, make_user, users):
    make_user()
    monkeypatch.setenv("ADMIN_EMAIL", "alice@example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "ignored1")
    seed(mongo_db)
    assert users.get_by_email("alice@example.com")["isAdmin"] == "true"
