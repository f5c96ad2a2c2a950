"""Add keyed lookup digests for link tokens and recovery codes.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Existing rows keep NULL digests and are only reachable through the scan fallback.
    op.add_column("link_tokens", sa.Column("token_hmac", sa.String(length=64), nullable=True))
    op.add_column("recovery_codes", sa.Column("code_hmac", sa.String(length=64), nullable=True))
    op.create_index("ix_link_tokens_token_hmac", "link_tokens", ["token_hmac"])
    op.create_index("ix_recovery_codes_code_hmac", "recovery_codes", ["code_hmac"])


def downgrade() -> None:
    op.drop_index("ix_recovery_codes_code_hmac", table_name="recovery_codes")
    op.drop_index("ix_link_tokens_token_hmac", table_name="link_tokens")
    op.drop_column("recovery_codes", "code_hmac")
    op.drop_column("link_tokens", "token_hmac")
