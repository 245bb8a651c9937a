"""create annotations table

Revision ID: 3f1a9c2d7b4e
Revises: 
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2d7b4e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the annotations table.

    Skips creation when the runtime already built it with create_all.
    """
    from sqlalchemy import inspect

    conn = op.get_bind()
    if "annotations" in inspect(conn).get_table_names():
        return

    op.create_table(
        "annotations",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("numeric_id", sa.Integer(), nullable=True),
        sa.Column("document_id", sa.String(length=255), nullable=False),
        sa.Column("document_path", sa.Text(), nullable=False),
        # NULL anchor_text marks an article-level annotation
        sa.Column("anchor_text", sa.Text(), nullable=True),
        sa.Column("anchor_context", sa.Text(), nullable=True),
        sa.Column("anchor_text_position", sa.Integer(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("tags", sa.Text(), nullable=True),
        sa.Column("date_created", sa.String(length=40), nullable=False),
    )
    op.create_index("idx_annotations_document_id", "annotations", ["document_id"])
    op.create_index("idx_annotations_document_path", "annotations", ["document_path"])
    op.create_index("idx_annotations_date_created", "annotations", ["date_created"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_annotations_date_created", table_name="annotations")
    op.drop_index("idx_annotations_document_path", table_name="annotations")
    op.drop_index("idx_annotations_document_id", table_name="annotations")
    op.drop_table("annotations")
