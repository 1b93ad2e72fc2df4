import asyncio
import os
import uuid

from sqlalchemy import select

from kassa import config
from kassa.auth import ADMIN_ROLE, create_user
from kassa.helpers import now_ts
from kassa.infra.sql import make_async_engine
from kassa.model.db import Base, Product, User

ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "supasecret")

# slug, title, category, price (öre), inventory
CATALOG = [
    ("tea-sencha", "Sencha Green Tea", "TEA", 9500, 40),
    ("tea-earl-grey", "Earl Grey", "TEA", 8900, 40),
    ("thick-forest-honey", "Thick Forest Honey", "SUPERFOOD", 12000, 25),
    ("cold-pressed-rapeseed-oil", "Cold Pressed Rapeseed Oil", "OIL",
     14900, 15),
    ("dark-roast-beans", "Dark Roast Beans", "COFFEE", 15900, 20),
]


async def seed_catalog(db) -> int:
    existing = set((await db.execute(select(Product.slug))).scalars().all())
    added = 0
    for slug, title, category, price_cents, inventory in CATALOG:
        if slug in existing:
            continue
        db.add(Product(
            id=uuid.uuid4().hex,
            slug=slug,
            title=title,
            category=category,
            price_cents=price_cents,
            currency="SEK",
            status="PUBLISHED",
            inventory=inventory,
            created_at=now_ts(),
        ))
        added += 1
    await db.flush()
    return added


async def seed_admin(db) -> bool:
    email = ADMIN_EMAIL.strip().lower()
    found = (await db.execute(
        select(User.id).where(User.email == email)
    )).first()
    if found:
        return False
    await create_user(db, email, ADMIN_PASSWORD, roles=(ADMIN_ROLE,))
    return True


async def main():
    engine, SessionAsync = make_async_engine(config.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print('✅ tables created')

    async with SessionAsync() as db:
        async with db.begin():
            added = await seed_catalog(db)
            admin_created = await seed_admin(db)
    print(f'✅ {added} products added')
    if admin_created:
        print(f'✅ admin created: {ADMIN_EMAIL}')
    else:
        print(f'admin already present: {ADMIN_EMAIL}')
    await engine.dispose()


if __name__ == '__main__':
    asyncio.run(main())
