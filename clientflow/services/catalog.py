from sqlalchemy.orm import Session

from ..models.models import Service
from ..metrics import SERVICE_CATALOG


def seed_service_catalog(db: Session) -> int:
    """Insert any catalog service missing by slug. Returns how many were created."""
    existing = {slug for (slug,) in db.query(Service.slug).all()}
    created = 0
    for slug, (name, description) in SERVICE_CATALOG.items():
        if slug in existing:
            continue
        db.add(Service(name=name, slug=slug, description=description, is_active=True))
        created += 1
    if created:
        db.commit()
    return created
