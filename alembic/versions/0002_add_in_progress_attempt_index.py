"""one in-progress attempt per quiz and student
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_in_progress_attempt'
down_revision = '0001_initial'
branch_labels = None
depends_on = None

INDEX_NAME = "uq_attempt_in_progress"


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if INDEX_NAME in {ix["name"] for ix in inspector.get_indexes("attempt")}:
        return
    op.create_index(
        INDEX_NAME,
        "attempt",
        ["quiz_id", "user_id"],
        unique=True,
        sqlite_where=sa.text("is_completed = 0"),
        postgresql_where=sa.text("is_completed = false"),
    )


def downgrade():
    op.drop_index(INDEX_NAME, table_name="attempt")
