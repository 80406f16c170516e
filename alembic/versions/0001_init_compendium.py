from alembic import op
import sqlalchemy as sa

revision = "0001_init_compendium"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "profiles",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("email", sa.Text, nullable=False, server_default=""),
        sa.Column("username", sa.Text, nullable=False),
        sa.Column("role", sa.Text, nullable=False, server_default="reader"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=False), server_default=sa.func.current_timestamp(), nullable=False),
    )

    op.create_table(
        "characters",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False, server_default="Character"),
        sa.Column("intro", sa.Text, nullable=False, server_default=""),
        sa.Column("image_url", sa.Text, nullable=True),
        sa.Column("created_by", sa.Text, nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=False), server_default=sa.func.current_timestamp(), nullable=False),
    )
    op.create_index("idx_characters_name", "characters", ["name"])

    op.create_table(
        "character_sections",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("character_id", sa.Text, sa.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False),
        sa.Column("section_key", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("content", sa.Text, nullable=False, server_default=""),
        sa.Column("display_order", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("character_id", "section_key", name="uq_character_sections_key"),
    )
    op.create_index("idx_character_sections_character_id", "character_sections", ["character_id"])

    op.create_table(
        "character_infobox",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("character_id", sa.Text, sa.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False),
        sa.Column("field_key", sa.Text, nullable=False),
        sa.Column("field_value", sa.Text, nullable=False, server_default=""),
        sa.UniqueConstraint("character_id", "field_key", name="uq_character_infobox_key"),
    )

    op.create_table(
        "character_documents",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("character_id", sa.Text, sa.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False),
        sa.Column("doc_name", sa.Text, nullable=False),
        sa.Column("doc_url", sa.Text, nullable=False),
        sa.Column("display_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=False), server_default=sa.func.current_timestamp(), nullable=False),
    )
    op.create_index("idx_character_documents_character_id", "character_documents", ["character_id"])


def downgrade():
    op.drop_index("idx_character_documents_character_id", table_name="character_documents")
    op.drop_table("character_documents")
    op.drop_table("character_infobox")
    op.drop_index("idx_character_sections_character_id", table_name="character_sections")
    op.drop_table("character_sections")
    op.drop_index("idx_characters_name", table_name="characters")
    op.drop_table("characters")
    op.drop_table("profiles")
