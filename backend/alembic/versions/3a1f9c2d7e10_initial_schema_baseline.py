"""initial_schema_baseline

Revision ID: 3a1f9c2d7e10
Revises: 
Create Date: 2026-10-19 09:00:00.000000

Baseline migration that creates the scheduling schema from the current model
definitions: therapists, patients, versioned availability rule sets and rules,
blackouts, appointments and reminder delivery markers.
"""
from typing import Sequence, Union

from alembic import op

# Import all models to ensure they're registered with Base.metadata
from core.database import Base
import models  # noqa: F401


# revision identifiers, used by Alembic.
revision: str = '3a1f9c2d7e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create all database tables from SQLAlchemy models.

    This includes the unique (appointment_id, offset_label) constraint on
    reminder_deliveries that makes reminder sends at-most-once per pair, and
    the (therapist_id, version) constraint on availability_rule_sets.
    """
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    """Drop all tables created by the baseline."""
    Base.metadata.drop_all(bind=op.get_bind())
