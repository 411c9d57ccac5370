#!/usr/bin/env python3
"""
Seed script to create a demo restaurant with tables
"""

import asyncio
import uuid


async def seed_demo_data():
    """Seed demo data for development"""
    from sqlalchemy import select

    from app.api.auth import create_access_token
    from app.database import SessionLocal, engine, Base
    from app.models.restaurant import Restaurant, Table, TableStatus

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        # Check if demo restaurant already exists
        result = await db.execute(
            select(Restaurant).where(Restaurant.name == "Trattoria da Mario")
        )
        existing = result.scalar_one_or_none()

        if existing:
            print("Demo data already exists. Skipping...")
            return

        print("Creating demo restaurant...")

        restaurant = Restaurant(
            id=uuid.uuid4(),
            name="Trattoria da Mario",
            phone="+41441234567",  # Replace with a phone you can answer
        )
        db.add(restaurant)
        await db.flush()

        tables = [
            Table(
                restaurant_id=restaurant.id,
                label=label,
                seats=seats,
                status=TableStatus.FREE.value,
            )
            for label, seats in [("Window", 2), ("Corner", 4), ("Terrace", 4), ("Family", 6)]
        ]
        db.add_all(tables)
        await db.commit()

        table_lines = "\n".join(f"  {t.label} ({t.seats} seats): {t.id}" for t in tables)
        print(f"""
Demo data created successfully!

Restaurant: {restaurant.name}
  ID: {restaurant.id}
  Phone: {restaurant.phone}

Tables:
{table_lines}

Development token for diner "demo-diner":
  {create_access_token("demo-diner", expires_minutes=7 * 24 * 60)}

Set TEST_TO_NUMBER to route every confirmation call to your own phone.
""")


if __name__ == "__main__":
    asyncio.run(seed_demo_data())
