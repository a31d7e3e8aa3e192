"""Add the overdue flag to invoices.

Marks invoices expired by their due date while the gateway still accepts
payment, so late credits and ``charge.paid`` events can settle them.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "002"
down_revision: str | Sequence[str] = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "invoices",
        sa.Column(
            "overdue",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_column("invoices", "overdue")
