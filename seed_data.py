from sqlmodel import Session, select
from app.db.session import engine, create_db_and_tables
from app.models.product import Product, ProductVariant

CATALOG = [
    {
        "title": "Classic Cotton Tee",
        "slug": "classic-cotton-tee",
        "description": "Heavyweight cotton t-shirt with a relaxed fit.",
        "variants": [
            {"sku": "TEE-BLK-M", "title": "Black / M", "price": 24.00},
            {"sku": "TEE-BLK-L", "title": "Black / L", "price": 24.00},
            {"sku": "TEE-WHT-M", "title": "White / M", "price": 22.00},
        ],
    },
    {
        "title": "Canvas Tote Bag",
        "slug": "canvas-tote-bag",
        "description": "Reinforced canvas tote with inner pocket.",
        "variants": [
            {"sku": "TOTE-NAT", "title": "Natural", "price": 18.50},
        ],
    },
]

def seed_products(session: Session) -> int:
    """Insert the demo catalog unless products already exist. Returns the number of variants created."""
    existing_products = session.exec(select(Product)).all()
    if existing_products:
        print(f"Database already contains {len(existing_products)} products. Skipping seed.")
        return 0

    created = 0
    for entry in CATALOG:
        product = Product(title=entry["title"], slug=entry["slug"], description=entry["description"])
        session.add(product)
        session.flush()
        for variant in entry["variants"]:
            session.add(ProductVariant(product_id=product.id, **variant))
            created += 1

    session.commit()
    print(f"Seeded {len(CATALOG)} products with {created} variants.")
    return created

if __name__ == "__main__":
    print("Creating database and tables...")
    create_db_and_tables()
    with Session(engine) as session:
        seed_products(session)
