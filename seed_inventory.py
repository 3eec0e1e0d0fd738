# seed_inventory.py
# Demo spare parts for a fresh install. Safe to run twice: parts are matched by name.

from modules.spare_parts.catalog import get_catalog

DEMO_PARTS = [
    # name, unit, total stock, low stock threshold
    ("Charge controller board", "pcs", 40, 10),
    ("Lithium battery pack 12V", "pcs", 25, 5),
    ("Solar panel 10W", "pcs", 30, 8),
    ("USB charging cable", "pcs", 120, 20),
    ("LED bulb 1W", "pcs", 200, 30),
    ("Insulated wire", "m", 500, 50),
]


def run(app):
    created = []
    with app.app_context():
        catalog = get_catalog()
        existing = {part.name for part in catalog.all()}
        for name, unit, total, threshold in DEMO_PARTS:
            if name in existing:
                continue
            created.append(catalog.create(name=name, unit=unit, total_stock=total,
                                          low_stock_threshold=threshold))
    print(f"Seed OK: {len(created)} part(s) created, {len(DEMO_PARTS) - len(created)} already present.")
    return created


if __name__ == "__main__":
    from app import create_app

    run(create_app())
