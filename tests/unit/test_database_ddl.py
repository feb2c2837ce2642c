"""
Tests for schemasync.database.ddl module.
"""

import pytest

from schemasync.database.ddl import (
    PostgresDDL,
    canonical_type,
    compare_default_values,
    is_generated_default,
    normalize_default,
    normalize_type,
    quote_identifier,
    quote_literal,
)
from schemasync.schema.catalog import LiveColumn, LiveForeignKey, LiveIndex, LivePrimaryKey, LiveTable
from schemasync.schema.target import TargetColumn


class TestQuoting:
    """Test identifier and literal quoting."""

    def test_quote_identifier(self):
        assert quote_identifier("users") == '"users"'
        assert quote_identifier('we"ird') == '"we""ird"'

    def test_quote_literal(self):
        assert quote_literal("O'Brien") == "'O''Brien'"


class TestTypeNormalization:
    """Test mapping of declared types to canonical PostgreSQL names."""

    @pytest.mark.parametrize(
        "column,expected",
        [
            (TargetColumn(name="c", type="int"), "integer"),
            (TargetColumn(name="c", type="INTEGER"), "integer"),
            (TargetColumn(name="c", type="bigserial"), "bigint"),
            (TargetColumn(name="c", type="varchar", length=255), "character varying(255)"),
            (TargetColumn(name="c", type="varchar(64)"), "character varying(64)"),
            (TargetColumn(name="c", type="varchar"), "character varying"),
            (TargetColumn(name="c", type="char"), "character(1)"),
            (TargetColumn(name="c", type="decimal", precision=10, scale=2), "numeric(10,2)"),
            (TargetColumn(name="c", type="decimal(12,4)"), "numeric(12,4)"),
            (TargetColumn(name="c", type="numeric(8)"), "numeric(8,0)"),
            (TargetColumn(name="c", type="numeric"), "numeric"),
            (TargetColumn(name="c", type="datetime"), "timestamp without time zone"),
            (TargetColumn(name="c", type="timestamptz"), "timestamp with time zone"),
            (TargetColumn(name="c", type="double precision"), "double precision"),
            (TargetColumn(name="c", type="bool"), "boolean"),
            (TargetColumn(name="c", type="jsonb"), "jsonb"),
            (TargetColumn(name="c", type="integer[]"), "integer[]"),
            (TargetColumn(name="c", type="int4[][]"), "integer[]"),
            (TargetColumn(name="c", type="varchar(20)[]"), "character varying[]"),
            (TargetColumn(name="c", type="text []"), "text[]"),
        ],
    )
    def test_normalize_type(self, column, expected):
        assert normalize_type(column) == expected

    def test_canonical_type(self):
        assert canonical_type("character varying", length=255) == "character varying(255)"
        assert canonical_type("character varying") == "character varying"
        assert canonical_type("numeric", precision=10) == "numeric(10,0)"
        assert canonical_type("INTEGER", precision=32, scale=0) == "integer"


class TestDefaultComparison:
    """Test default value normalization."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, None),
            ("'active'::character varying", "'active'"),
            ("('0'::numeric)", "0"),
            ("'42'::integer", "42"),
            ("NOW()", "now()"),
            ("CURRENT_TIMESTAMP", "current_timestamp"),
            ("'Mixed Case'", "'Mixed Case'"),
            ("'{}'::jsonb", "'{}'"),
        ],
    )
    def test_normalize_default(self, value, expected):
        assert normalize_default(value) == expected

    def test_compare_default_values(self):
        assert compare_default_values("0", "'0'::integer")
        assert compare_default_values("'active'", "'active'::text")
        assert compare_default_values(None, None)
        assert not compare_default_values("'a'", "'b'::text")
        assert not compare_default_values("1", None)

    def test_is_generated_default(self):
        assert is_generated_default("nextval('users_id_seq'::regclass)")
        assert is_generated_default("gen_random_uuid()")
        assert not is_generated_default("0")
        assert not is_generated_default(None)


class TestPostgresDDL:
    """Test DDL statement rendering."""

    @pytest.fixture
    def ddl(self):
        return PostgresDDL("public")

    @pytest.fixture
    def users(self):
        return LiveTable(
            name="users",
            columns=[
                LiveColumn(name="id", type="integer", is_generated=True, is_primary=True),
                LiveColumn(name="name", type="character varying(255)", comment="Full name"),
            ],
        )

    def test_column_definition(self, ddl):
        assert (
            ddl.column_definition(
                LiveColumn(name="id", type="integer", is_generated=True, is_primary=True)
            )
            == '"id" SERIAL PRIMARY KEY NOT NULL'
        )
        assert (
            ddl.column_definition(
                LiveColumn(name="total", type="numeric(10,2)", default="0", is_nullable=True)
            )
            == '"total" numeric(10,2) DEFAULT 0'
        )
        assert (
            ddl.column_definition(LiveColumn(name="uid", type="uuid", is_generated=True))
            == '"uid" uuid NOT NULL DEFAULT gen_random_uuid()'
        )

    def test_create_table(self, ddl, users):
        assert ddl.create_table(users) == [
            'CREATE TABLE "public"."users" ("id" SERIAL PRIMARY KEY NOT NULL, '
            '"name" character varying(255) NOT NULL)',
            'COMMENT ON COLUMN "public"."users"."name" IS \'Full name\'',
        ]

    def test_add_and_drop_column(self, ddl, users):
        column = LiveColumn(name="email", type="text", is_nullable=True)

        assert ddl.add_column(users, column) == [
            'ALTER TABLE "public"."users" ADD COLUMN "email" text'
        ]
        assert ddl.drop_column(users, column) == 'ALTER TABLE "public"."users" DROP COLUMN "email"'

    def test_change_column_nullability(self, ddl, users):
        old = LiveColumn(name="name", type="text", is_nullable=True)
        new = LiveColumn(name="name", type="text", is_nullable=False)

        assert ddl.change_column(users, old, new) == [
            'ALTER TABLE "public"."users" ALTER COLUMN "name" SET NOT NULL'
        ]

    def test_change_column_type_and_default(self, ddl, users):
        old = LiveColumn(name="score", type="integer", default="'0'::integer")
        new = LiveColumn(name="score", type="bigint", default="1", is_nullable=True)

        assert ddl.change_column(users, old, new) == [
            'ALTER TABLE "public"."users" ALTER COLUMN "score" TYPE bigint USING "score"::bigint',
            'ALTER TABLE "public"."users" ALTER COLUMN "score" DROP NOT NULL',
            'ALTER TABLE "public"."users" ALTER COLUMN "score" SET DEFAULT 1',
        ]

    def test_change_column_drops_removed_default(self, ddl, users):
        old = LiveColumn(name="status", type="text", default="'new'::text")
        new = LiveColumn(name="status", type="text")

        assert ddl.change_column(users, old, new) == [
            'ALTER TABLE "public"."users" ALTER COLUMN "status" DROP DEFAULT'
        ]

    def test_change_column_to_generated(self, ddl, users):
        old = LiveColumn(name="id", type="integer")
        new = LiveColumn(name="id", type="integer", is_generated=True)

        assert ddl.change_column(users, old, new) == [
            'CREATE SEQUENCE IF NOT EXISTS "public"."users_id_seq" OWNED BY "public"."users"."id"',
            'ALTER TABLE "public"."users" ALTER COLUMN "id" '
            'SET DEFAULT nextval(\'"public"."users_id_seq"\')',
        ]

    def test_change_column_from_generated(self, ddl, users):
        old = LiveColumn(
            name="id", type="integer", is_generated=True, default="nextval('users_id_seq'::regclass)"
        )
        new = LiveColumn(name="id", type="integer")

        assert ddl.change_column(users, old, new) == [
            'ALTER TABLE "public"."users" ALTER COLUMN "id" DROP DEFAULT'
        ]

    def test_change_column_comment(self, ddl, users):
        old = LiveColumn(name="name", type="text", comment="Old")
        new = LiveColumn(name="name", type="text")

        assert ddl.change_column(users, old, new) == [
            'COMMENT ON COLUMN "public"."users"."name" IS NULL'
        ]

    def test_update_primary_keys_rebuilds_constraint(self, ddl):
        table = LiveTable(
            name="memberships",
            primary_keys=[
                LivePrimaryKey(name="memberships_pkey", column_name="user_id"),
                LivePrimaryKey(name="", column_name="group_id"),
            ],
        )

        assert ddl.update_primary_keys(table) == [
            'ALTER TABLE "public"."memberships" DROP CONSTRAINT IF EXISTS "memberships_pkey"',
            'ALTER TABLE "public"."memberships" ADD CONSTRAINT "memberships_pkey" '
            'PRIMARY KEY ("user_id", "group_id")',
        ]

    def test_update_primary_keys_on_new_table(self, ddl):
        table = LiveTable(name="tags", primary_keys=[LivePrimaryKey(name="", column_name="code")])

        assert ddl.update_primary_keys(table)[1] == (
            'ALTER TABLE "public"."tags" ADD CONSTRAINT "tags_pkey" PRIMARY KEY ("code")'
        )

    def test_update_primary_keys_drop_all(self, ddl):
        table = LiveTable(name="links")
        dropped = [LivePrimaryKey(name="links_pk", column_name="a")]

        assert ddl.update_primary_keys(table, dropped) == [
            'ALTER TABLE "public"."links" DROP CONSTRAINT IF EXISTS "links_pk"'
        ]

    def test_foreign_keys(self, ddl):
        orders = LiveTable(name="orders")
        fk = LiveForeignKey(
            name="fk_orders_user_id",
            table_name="orders",
            column_names=["user_id"],
            referenced_table_name="users",
            referenced_column_names=["id"],
            on_delete="CASCADE",
        )

        assert ddl.add_foreign_key(orders, fk) == (
            'ALTER TABLE "public"."orders" ADD CONSTRAINT "fk_orders_user_id" '
            'FOREIGN KEY ("user_id") REFERENCES "public"."users" ("id") ON DELETE CASCADE'
        )
        assert ddl.drop_foreign_key(orders, fk) == (
            'ALTER TABLE "public"."orders" DROP CONSTRAINT "fk_orders_user_id"'
        )

    def test_indices(self, ddl, users):
        index = LiveIndex(
            name="idx_users_email", table_name="users", column_names=["email"], is_unique=True
        )

        assert ddl.create_index(users, index) == (
            'CREATE UNIQUE INDEX "idx_users_email" ON "public"."users" ("email")'
        )
        assert ddl.drop_index(index) == 'DROP INDEX "public"."idx_users_email"'

    def test_custom_schema(self):
        ddl = PostgresDDL("app")

        assert ddl.qualified("users") == '"app"."users"'
