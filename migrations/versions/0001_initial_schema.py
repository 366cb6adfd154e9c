"""Initial club schema.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("registration_number", sa.String(64), nullable=True),
        sa.Column("emergency_contact_name", sa.String(255), nullable=True),
        sa.Column("emergency_contact_mobile", sa.String(64), nullable=True),
        sa.Column("pronouns", sa.String(64), nullable=True),
        sa.Column("dietary_requirements", sa.Text(), nullable=True),
        sa.Column("instagram", sa.String(128), nullable=True),
        sa.Column("fave_crag", sa.String(255), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="member"),
        sa.Column("membership_status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("membership_year", sa.String(16), nullable=True),
        sa.Column("calendar_token", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("calendar_token", name="uq_users_calendar_token"),
    )

    op.create_table(
        "committee_roles",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(64), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "role", name="pk_committee_roles"),
    )

    op.create_table(
        "club_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("elections_open", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.String(64), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
    )

    # Membership
    op.create_table(
        "membership_types",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("label", sa.String(128), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_membership_types"),
    )
    op.create_table(
        "user_memberships",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("membership_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("membership_year", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "membership_type", "membership_year", name="uq_user_membership"),
    )
    op.create_index("idx_user_memberships_status", "user_memberships", ["status"])

    # Sessions
    op.create_table(
        "session_types",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("label", sa.String(128), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_session_types"),
    )
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("starts_at", sa.String(64), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("booked_slots", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("required_membership", sa.String(64), nullable=False, server_default="basic"),
        sa.Column("visibility", sa.String(32), nullable=False, server_default="all"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("capacity > 0", name="ck_sessions_capacity_positive"),
    )
    op.create_index("idx_sessions_starts_at", "sessions", ["starts_at"])
    op.create_table(
        "bookings",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "session_id", name="pk_bookings"),
    )
    op.create_index("idx_bookings_session", "bookings", ["session_id"])

    # Gear
    op.create_table(
        "gear",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("total_quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("available_quantity", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("idx_gear_name", "gear", ["name"])
    op.create_table(
        "gear_requests",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("gear_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("request_date", sa.DateTime(), nullable=False),
        sa.Column("return_date", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["gear_id"], ["gear.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_gear_requests_user", "gear_requests", ["user_id"])
    op.create_index("idx_gear_requests_status", "gear_requests", ["status"])

    # Elections
    op.create_table(
        "candidates",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(128), nullable=False),
        sa.Column("manifesto", sa.Text(), nullable=False),
        sa.Column("presentation_link", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", name="pk_candidates"),
    )
    op.create_table(
        "votes",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("candidate_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["candidate_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", name="pk_votes"),
    )
    op.create_index("idx_votes_candidate", "votes", ["candidate_id"])
    op.create_table(
        "referendums",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_user_id", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_table(
        "referendum_votes",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("referendum_id", sa.String(64), nullable=False),
        sa.Column("choice", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["referendum_id"], ["referendums.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "referendum_id", name="pk_referendum_votes"),
    )


def downgrade() -> None:
    op.drop_table("referendum_votes")
    op.drop_table("referendums")
    op.drop_index("idx_votes_candidate", table_name="votes")
    op.drop_table("votes")
    op.drop_table("candidates")
    op.drop_index("idx_gear_requests_status", table_name="gear_requests")
    op.drop_index("idx_gear_requests_user", table_name="gear_requests")
    op.drop_table("gear_requests")
    op.drop_index("idx_gear_name", table_name="gear")
    op.drop_table("gear")
    op.drop_index("idx_bookings_session", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("idx_sessions_starts_at", table_name="sessions")
    op.drop_table("sessions")
    op.drop_table("session_types")
    op.drop_index("idx_user_memberships_status", table_name="user_memberships")
    op.drop_table("user_memberships")
    op.drop_table("membership_types")
    op.drop_table("audit_events")
    op.drop_table("club_settings")
    op.drop_table("committee_roles")
    op.drop_table("users")
