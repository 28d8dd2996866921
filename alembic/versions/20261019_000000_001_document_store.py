"""Create the documents table of the remote store.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # One row per (environment, collection, document id); payload is the camelCase JSON document
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("environment_id", sa.String(128), nullable=False),
        sa.Column("collection", sa.String(64), nullable=False),
        sa.Column("doc_id", sa.String(255), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("environment_id", "collection", "doc_id", name="uq_documents_address"),
    )
    op.create_index("ix_documents_environment_id", "documents", ["environment_id"])


def downgrade():
    op.drop_index("ix_documents_environment_id", table_name="documents")
    op.drop_table("documents")
