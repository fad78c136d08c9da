"""add time taken to attempts
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0003_attempt_time_taken'
down_revision = '0002_in_progress_attempt'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    columns = {c["name"] for c in inspector.get_columns("attempt")}
    if "time_taken_seconds" in columns:
        return
    with op.batch_alter_table("attempt") as batch_op:
        batch_op.add_column(sa.Column("time_taken_seconds", sa.Integer(), nullable=True))


def downgrade():
    with op.batch_alter_table("attempt") as batch_op:
        batch_op.drop_column("time_taken_seconds")
