from alembic import op
import sqlalchemy as sa

revision = "0002_outbox_quarantine_claims"
down_revision = "0001_outbox_events"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column("outbox_events", sa.Column("quarantined_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("outbox_events", sa.Column("last_error", sa.Text(), nullable=True))
    op.add_column("outbox_events", sa.Column("claimed_by", sa.String(length=64), nullable=True))
    op.add_column("outbox_events", sa.Column("claim_expires_at", sa.DateTime(timezone=True), nullable=True))


def downgrade():
    op.drop_column("outbox_events", "claim_expires_at")
    op.drop_column("outbox_events", "claimed_by")
    op.drop_column("outbox_events", "last_error")
    op.drop_column("outbox_events", "quarantined_at")
