"""Initial schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names: str) -> list[sa.Column]:
    return [sa.Column(name, sa.DateTime(), nullable=False) for name in names]


def upgrade() -> None:
    # ── Users, roles and capabilities ────────────────────────────────────────
    op.create_table(
        "capabilities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(191), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps("created_at"),
    )
    op.create_index("ix_capabilities_slug", "capabilities", ["slug"], unique=True)

    op.create_table(
        "capability_inheritance",
        sa.Column(
            "parent_capability_id",
            sa.Integer(),
            sa.ForeignKey("capabilities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "child_capability_id",
            sa.Integer(),
            sa.ForeignKey("capabilities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(191), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps("created_at"),
    )
    op.create_index("ix_roles_slug", "roles", ["slug"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(191), nullable=True, unique=True),
        sa.Column("email", sa.String(191), nullable=False),
        sa.Column("password", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(191), nullable=True),
        sa.Column("last_name", sa.String(191), nullable=True),
        sa.Column("picture", sa.String(1024), nullable=True),
        sa.Column("locale", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("email_verified_at", sa.DateTime(), nullable=True),
        sa.Column("reset_token", sa.String(255), nullable=True),
        sa.Column("reset_token_prefix", sa.String(16), nullable=True),
        sa.Column("reset_token_expires_at", sa.DateTime(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_reset_token_prefix", "users", ["reset_token_prefix"])

    for table, left, right in (
        ("user_roles", ("user_id", "users"), ("role_id", "roles")),
        ("user_capabilities", ("user_id", "users"), ("capability_id", "capabilities")),
        ("role_capabilities", ("role_id", "roles"), ("capability_id", "capabilities")),
    ):
        op.create_table(
            table,
            sa.Column(left[0], sa.Integer(), sa.ForeignKey(f"{left[1]}.id", ondelete="CASCADE"), primary_key=True),
            sa.Column(right[0], sa.Integer(), sa.ForeignKey(f"{right[1]}.id", ondelete="CASCADE"), primary_key=True),
        )

    # ── Options ──────────────────────────────────────────────────────────────
    op.create_table(
        "options",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(191), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("autoload", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps("created_at", "updated_at"),
    )
    op.create_index("ix_options_name", "options", ["name"], unique=True)

    # ── Auth ─────────────────────────────────────────────────────────────────
    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        *_timestamps("created_at"),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])

    op.create_table(
        "revoked_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        *_timestamps("revoked_at"),
    )

    op.create_table(
        "auth_providers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(191), nullable=True),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("client_id", sa.String(191), nullable=False),
        sa.Column("secret_env_key", sa.String(191), nullable=False),
        sa.Column("scope", sa.JSON(), nullable=True),
        sa.Column("auth_url", sa.String(1024), nullable=False),
        sa.Column("token_url", sa.String(1024), nullable=False),
        sa.Column("user_info_url", sa.String(1024), nullable=False),
        sa.Column("redirect_uri", sa.String(1024), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("response_params", sa.JSON(), nullable=True),
        *_timestamps("created_at", "updated_at"),
    )

    op.create_table(
        "user_providers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider_slug", sa.String(100), nullable=False),
        sa.Column("provider_user_id", sa.String(191), nullable=False),
        *_timestamps("created_at"),
        sa.UniqueConstraint("provider_slug", "provider_user_id", name="uq_user_providers_sub"),
    )
    op.create_index("ix_user_providers_user_id", "user_providers", ["user_id"])

    op.create_table(
        "oauth_states",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("state_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("provider_slug", sa.String(100), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        *_timestamps("created_at"),
    )

    # ── Post types and posts ─────────────────────────────────────────────────
    op.create_table(
        "post_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("name_singular", sa.String(191), nullable=True),
        sa.Column("name_plural", sa.String(191), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.Text(), nullable=True),
        sa.Column("show_in_menu", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("badge", sa.Integer(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("capabilities", sa.JSON(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        *_timestamps("created_at", "updated_at"),
    )

    op.create_table(
        "post_type_fields",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_type_slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(191), nullable=True),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("type", sa.String(50), nullable=False, server_default="text"),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revisions", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("order", sa.Integer(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.UniqueConstraint("post_type_slug", "slug", name="uq_post_type_fields_slug"),
    )
    op.create_index("ix_post_type_fields_post_type_slug", "post_type_fields", ["post_type_slug"])

    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_type_slug", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(191), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        *_timestamps("created_at", "updated_at"),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("post_type_slug", "slug", name="uq_posts_type_slug"),
    )
    op.create_index("idx_posts_status", "posts", ["status"])

    op.create_table(
        "post_meta",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("field_slug", sa.String(100), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
    )
    op.create_index("idx_post_meta_post_field", "post_meta", ["post_id", "field_slug"])

    op.create_table(
        "post_authors",
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    )

    # ── Taxonomies and terms ─────────────────────────────────────────────────
    op.create_table(
        "taxonomies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("post_type_slug", sa.String(100), nullable=False),
        sa.Column("name_singular", sa.String(191), nullable=True),
        sa.Column("name_plural", sa.String(191), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("show_in_menu", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("icon", sa.Text(), nullable=True),
        sa.Column("badge", sa.Integer(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("capabilities", sa.JSON(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        *_timestamps("created_at"),
        sa.UniqueConstraint("slug", "post_type_slug", name="uq_taxonomies_slug"),
    )

    op.create_table(
        "taxonomy_fields",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("taxonomy_slug", sa.String(100), nullable=False),
        sa.Column("post_type_slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(191), nullable=True),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("type", sa.String(50), nullable=False, server_default="text"),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("order", sa.Integer(), nullable=True),
        sa.UniqueConstraint("slug", "taxonomy_slug", "post_type_slug", name="uq_taxonomy_fields_slug"),
    )
    op.create_index("ix_taxonomy_fields_taxonomy_slug", "taxonomy_fields", ["taxonomy_slug"])

    op.create_table(
        "terms",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("taxonomy_slug", sa.String(100), nullable=False),
        sa.Column("post_type_slug", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(191), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="published"),
        *_timestamps("created_at", "updated_at"),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("slug", "taxonomy_slug", "post_type_slug", name="uq_terms_slug"),
    )

    op.create_table(
        "term_meta",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("term_id", sa.Integer(), sa.ForeignKey("terms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("field_slug", sa.String(100), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
    )
    op.create_index("idx_term_meta_term_field", "term_meta", ["term_id", "field_slug"])

    op.create_table(
        "term_relationships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("term_id", sa.Integer(), sa.ForeignKey("terms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False),
        *_timestamps("created_at"),
        sa.UniqueConstraint("term_id", "post_id", name="uq_term_relationships"),
    )
    op.create_index("ix_term_relationships_post_id", "term_relationships", ["post_id"])

    # ── Extension migrations ─────────────────────────────────────────────────
    op.create_table(
        "plugin_migrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("plugin_slug", sa.String(100), nullable=False),
        sa.Column("migration_name", sa.String(191), nullable=False),
        sa.Column("batch", sa.Integer(), nullable=False),
        *_timestamps("ran_at"),
        sa.UniqueConstraint("plugin_slug", "migration_name", name="uq_plugin_migrations_name"),
    )
    op.create_index("ix_plugin_migrations_plugin_slug", "plugin_migrations", ["plugin_slug"])


def downgrade() -> None:
    for table in (
        "plugin_migrations",
        "term_relationships",
        "term_meta",
        "terms",
        "taxonomy_fields",
        "taxonomies",
        "post_authors",
        "post_meta",
        "posts",
        "post_type_fields",
        "post_types",
        "oauth_states",
        "user_providers",
        "auth_providers",
        "revoked_tokens",
        "refresh_tokens",
        "options",
        "role_capabilities",
        "user_capabilities",
        "user_roles",
        "users",
        "roles",
        "capability_inheritance",
        "capabilities",
    ):
        op.drop_table(table)
