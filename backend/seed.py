"""
Database seeding for system master data.
Run this at application startup to ensure the default space and component types exist.
"""
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from auth import generate_api_token, hash_api_token
from models import SpaceType, ComponentType, User

# System rows carry no tenant_id and are visible to every tenant
SYSTEM_SPACE_TYPES = [
    {"name": "Living Room", "slug": "living-room", "icon": "sofa"},
    {"name": "Master Bedroom", "slug": "master-bedroom", "icon": "bed"},
    {"name": "Bedroom", "slug": "bedroom", "icon": "bed"},
    {"name": "Kids Bedroom", "slug": "kids-bedroom", "icon": "bed"},
    {"name": "Kitchen", "slug": "kitchen", "icon": "chef-hat"},
    {"name": "Dining", "slug": "dining", "icon": "utensils"},
    {"name": "Bathroom", "slug": "bathroom", "icon": "bath"},
    {"name": "Foyer", "slug": "foyer", "icon": "door-open"},
    {"name": "Balcony", "slug": "balcony", "icon": "sun"},
    {"name": "Study", "slug": "study", "icon": "book"},
]

SYSTEM_COMPONENT_TYPES = [
    {"name": "Wardrobe", "slug": "wardrobe", "icon": "archive"},
    {"name": "TV Unit", "slug": "tv-unit", "icon": "tv"},
    {"name": "Kitchen Cabinets", "slug": "kitchen-cabinets", "icon": "layout-grid"},
    {"name": "False Ceiling", "slug": "false-ceiling", "icon": "layers"},
    {"name": "Bed", "slug": "bed", "icon": "bed-double"},
    {"name": "Study Table", "slug": "study-table", "icon": "table"},
    {"name": "Shoe Rack", "slug": "shoe-rack", "icon": "footprints"},
    {"name": "Vanity", "slug": "vanity", "icon": "square"},
    {"name": "Paneling", "slug": "paneling", "icon": "panel-top"},
]


def seed_master_data(db: Session) -> None:
    """
    Seed system space and component types if they don't exist.
    Called at application startup.
    """
    for model, rows in ((SpaceType, SYSTEM_SPACE_TYPES), (ComponentType, SYSTEM_COMPONENT_TYPES)):
        for order, row_data in enumerate(rows):
            # Check if row already exists by slug
            existing = db.query(model).filter(
                model.slug == row_data["slug"],
                model.tenant_id.is_(None)
            ).first()

            if not existing:
                db.add(model(**row_data, display_order=order, tenant_id=None))

    db.commit()


def create_user(
    db: Session,
    email: str,
    tenant_id: Optional[str],
    name: Optional[str] = None,
    is_super_admin: bool = False
) -> Tuple[User, str]:
    """
    Create a user with a fresh API token.

    Returns the user and the clear-text token; only its hash is stored.
    """
    token = generate_api_token()
    user = User(
        email=email,
        name=name,
        tenant_id=tenant_id,
        is_super_admin=is_super_admin,
        api_token_hash=hash_api_token(token),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user, token
