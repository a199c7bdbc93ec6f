"""Initial schema: tenants plus Asterisk realtime PJSIP tables.

ps_auths / ps_aors / ps_endpoints follow the column names Asterisk's
realtime driver expects (res_pjsip via res_config_odbc/pgsql); tenantid is
the only column Asterisk ignores.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE tenants (
            id              VARCHAR(50)  PRIMARY KEY,
            inbound_did     VARCHAR(40)  NOT NULL,
            outbound_trunk  VARCHAR(80)  NOT NULL,
            created_at      TIMESTAMPTZ  NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE ps_auths (
            id          VARCHAR(40)  PRIMARY KEY,
            auth_type   VARCHAR(20)  NOT NULL DEFAULT 'userpass',
            username    VARCHAR(80),
            password    VARCHAR(128)
        )
    """)

    op.execute("""
        CREATE TABLE ps_aors (
            id               VARCHAR(40)  PRIMARY KEY,
            max_contacts     INTEGER      NOT NULL DEFAULT 1,
            remove_existing  VARCHAR(3)   NOT NULL DEFAULT 'yes'
        )
    """)

    op.execute("""
        CREATE TABLE ps_endpoints (
            id                VARCHAR(40)  PRIMARY KEY,
            transport         VARCHAR(40),
            aors              VARCHAR(200),
            auth              VARCHAR(40),
            context           VARCHAR(80)  NOT NULL,
            disallow          VARCHAR(200) NOT NULL DEFAULT 'all',
            allow             VARCHAR(200) NOT NULL DEFAULT 'alaw,ulaw',
            direct_media      VARCHAR(3)   NOT NULL DEFAULT 'no',
            force_rport       VARCHAR(3)   NOT NULL DEFAULT 'no',
            rewrite_contact   VARCHAR(3)   NOT NULL DEFAULT 'no',
            ice_support       VARCHAR(3)   NOT NULL DEFAULT 'yes',
            media_encryption  VARCHAR(10)  NOT NULL DEFAULT 'no',
            tenantid          VARCHAR(50)  NOT NULL REFERENCES tenants(id)
        )
    """)

    op.execute("CREATE INDEX ix_ps_endpoints_tenantid ON ps_endpoints (tenantid)")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_ps_endpoints_tenantid")
    op.execute("DROP TABLE IF EXISTS ps_endpoints")
    op.execute("DROP TABLE IF EXISTS ps_aors")
    op.execute("DROP TABLE IF EXISTS ps_auths")
    op.execute("DROP TABLE IF EXISTS tenants")
