"""
Database seeding script for a demo catalog.

Creates pickup and delivery zones, producers and wines for local
development. Producers and wines have no admin API; this is how a fresh
database gets them. Run after the database is set up.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.enums import ZoneType
from backend.app.models.producer import Producer
from backend.app.models.wine import Wine
from backend.app.models.zone import Zone
from backend.app.models.pallet import Pallet  # noqa: F401
from backend.app.models.reservation import OrderReservation, ReservationItem  # noqa: F401
from backend.app.models.payment_request import PaymentRequest  # noqa: F401
from backend.app.models.audit_log import AuditLog  # noqa: F401
from sqlalchemy import select


async def seed_catalog():
    """
    Seed zones, producers and wines.

    Creates:
    - 2 pickup zones (Bordeaux, Rhône)
    - 2 delivery zones (Stockholm, Uppsala)
    - 3 producers with one wine each
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting catalog seeding...")

        result = await db.execute(select(Zone).where(Zone.name == "Bordeaux"))
        if result.scalar_one_or_none():
            print("ℹ️  Catalog already seeded, skipping")
            return

        bordeaux = Zone(name="Bordeaux", zone_type=ZoneType.PICKUP,
                        center_lat=44.8378, center_lon=-0.5792, radius_km=60, country_code="FR")
        rhone = Zone(name="Rhône", zone_type=ZoneType.PICKUP,
                     center_lat=44.9334, center_lon=4.8924, radius_km=80, country_code="FR")
        stockholm = Zone(name="Stockholm", zone_type=ZoneType.DELIVERY,
                         center_lat=59.3293, center_lon=18.0686, radius_km=40, country_code="SE")
        uppsala = Zone(name="Uppsala", zone_type=ZoneType.DELIVERY,
                       center_lat=59.8586, center_lon=17.6389, radius_km=40, country_code="SE")
        db.add_all([bordeaux, rhone, stockholm, uppsala])
        await db.flush()
        print("✅ Created zones: Bordeaux, Rhône (pickup); Stockholm, Uppsala (delivery)")

        chateau = Producer(name="Château Margaux-sur-Mer", pickup_zone_id=bordeaux.id, moq_min_bottles=0)
        domaine = Producer(name="Domaine des Petits Clos", pickup_zone_id=bordeaux.id, moq_min_bottles=30)
        cotes = Producer(name="Côtes du Soleil", pickup_zone_id=rhone.id, moq_min_bottles=0)
        db.add_all([chateau, domaine, cotes])
        await db.flush()
        print("✅ Created producers (Domaine des Petits Clos has a 30 bottle MOQ)")

        db.add_all([
            Wine(name="Grand Vin 2019", producer_id=chateau.id, base_price_cents=15000),
            Wine(name="Petit Clos Rouge", producer_id=domaine.id, base_price_cents=20000),
            Wine(name="Syrah Vieilles Vignes", producer_id=cotes.id, base_price_cents=12000),
        ])

        await db.commit()

        print("\n🎉 Catalog seeding completed successfully!")
        print("\nNext: register a pallet for a zone pair via POST /v1/admin/pallets")


if __name__ == "__main__":
    asyncio.run(seed_catalog())
