from datetime import timedelta

from portal.database import SessionLocal, engine, Base
from portal.models import Tenant, User, Agency, Campaign
from portal.utils import utcnow
from portal.workflow.states import CampaignStatus

# Create tables
Base.metadata.create_all(bind=engine)

db = SessionLocal()

tenant = db.query(Tenant).filter(Tenant.domain == "localhost").first()
if not tenant:
    tenant = Tenant(domain="localhost", name="Local Development", is_active=True)
    db.add(tenant)
    db.flush()

cs_user = db.query(User).filter(User.tenant_id == tenant.id, User.email == "cs@example.com").first()
if not cs_user:
    cs_user = User(
        tenant_id=tenant.id,
        email="cs@example.com",
        display_name="Casey Support",
        role="cs",
        is_active=True,
    )
    db.add(cs_user)
    db.flush()

agencies = [
    Agency(tenant_id=tenant.id, name="Northlight Creative", email="studio@northlight.example", contact_name="Nora"),
    Agency(tenant_id=tenant.id, name="Fjord Media", email="hello@fjord.example", contact_name="Finn"),
]
for agency in agencies:
    exists = db.query(Agency).filter(Agency.tenant_id == tenant.id, Agency.email == agency.email).first()
    if not exists:
        db.add(agency)
db.flush()

first_agency = db.query(Agency).filter(Agency.tenant_id == tenant.id).order_by(Agency.id).first()
now = utcnow()

# Sample campaigns
campaigns = [
    Campaign(
        tenant_id=tenant.id,
        customer_name="Bakery Hansen",
        customer_email="owner@bakery.example",
        campaign_type="social_media",
        agency_id=first_agency.id,
        cs_user_id=cs_user.id,
        status=CampaignStatus.AWAITING_ASSETS.value,
        asset_deadline=now + timedelta(days=7),
        go_live_date=now + timedelta(days=21),
    ),
    Campaign(
        tenant_id=tenant.id,
        customer_name="Harbor Cycles",
        customer_email="shop@harborcycles.example",
        campaign_type="display_ads",
        agency_id=first_agency.id,
        cs_user_id=cs_user.id,
        status=CampaignStatus.AWAITING_ASSETS.value,
        asset_deadline=now + timedelta(days=3),
        go_live_date=now + timedelta(days=14),
    ),
]
if db.query(Campaign).filter(Campaign.tenant_id == tenant.id).count() == 0:
    for campaign in campaigns:
        db.add(campaign)

db.commit()
db.close()

print("Seed data created successfully!")
print(f"  - Tenant: {tenant.domain}")
print(f"  - CS user: {cs_user.email}")
print(f"  - {len(agencies)} agencies")
print(f"  - {len(campaigns)} campaigns")
