from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

from .models.account import Account, PaymentMethod
from .models.base import DBSerializableModel
from .models.items import Article, Community, CreatorTier, Post
from .models.ledger import LedgerEvent
from .models.membership import LIVE_MEMBERSHIP_STATUSES, Membership, Ownership
from .models.notification import NotificationEvent
from .models.transaction import Transaction


MODEL_REGISTRY: List[Type[DBSerializableModel]] = [
    Account,
    PaymentMethod,
    Article,
    Community,
    Post,
    CreatorTier,
    Transaction,
    Ownership,
    Membership,
    NotificationEvent,
    LedgerEvent,
]

# Unique keys the ledger's idempotency guards rely on
UNIQUE_KEYS: Dict[str, List[List[str]]] = {
    Ownership.collection_name: [["account_id", "article_id"]],
}


def generate_logical_schema() -> Dict[str, Any]:
    """Backend-agnostic schema of every persisted model, keyed by collection."""
    schema = {model.collection_name: model.db_schema() for model in MODEL_REGISTRY}
    for collection, keys in UNIQUE_KEYS.items():
        schema[collection]["unique"] = keys
    return schema


def render_sql_ddl(schema: Dict[str, Any], dialect: str = "postgres") -> str:
    """
    Small SQL DDL renderer. Live-membership uniqueness needs a partial
    index (status in trial/active), emitted for postgres only.
    """
    statements = [_render_table(name, spec, dialect) for name, spec in schema.items()]
    if dialect == "postgres" and Membership.collection_name in schema:
        live = ", ".join(f"'{s.value}'" for s in LIVE_MEMBERSHIP_STATUSES)
        statements.append(
            f'CREATE UNIQUE INDEX IF NOT EXISTS "uniq_live_membership" '
            f'ON "{Membership.collection_name}" ("account_id", "target_kind", "target_id") '
            f'WHERE "status" IN ({live});\n'
        )
    return "\n".join(statements)


def _render_table(table_name: str, spec: Dict[str, Any], dialect: str) -> str:
    required = set(spec.get("required", []))
    columns = [
        f'    "{name}" {_sql_type(meta["type"], dialect)} '
        f'{"NOT NULL" if name in required else "NULL"}'
        for name, meta in spec["properties"].items()
    ]
    columns.append(f'    PRIMARY KEY ("{spec.get("primary_key") or "id"}")')
    columns.extend(
        "    UNIQUE (" + ", ".join(f'"{c}"' for c in key) + ")" for key in spec.get("unique", [])
    )
    return f'CREATE TABLE IF NOT EXISTS "{table_name}" (\n' + ",\n".join(columns) + "\n);\n"


def render_nosql_schema(schema: Dict[str, Any]) -> str:
    return json.dumps(schema, indent=2, default=str)


_SQL_TYPES: Dict[str, str] = {
    "integer": "BIGINT",
    "number": "DOUBLE PRECISION",
    "boolean": "BOOLEAN",
    "string": "TEXT",
}


def _sql_type(logical_type: str, dialect: str) -> str:
    logical_type = logical_type.lower()
    postgres = dialect == "postgres"
    if logical_type in {"datetime", "date"}:
        return "TIMESTAMPTZ" if postgres else "TIMESTAMP"
    if logical_type in {"array", "object"}:
        return "JSONB" if postgres else "JSON"
    return _SQL_TYPES.get(logical_type, "TEXT")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Print the ledger's storage schema.")
    parser.add_argument("--backend", choices=["sql", "nosql"], required=True)
    parser.add_argument("--dialect", default="postgres", help="SQL dialect (postgres, mysql, ...).")
    parser.add_argument("--output", type=Path, help="Write to this file instead of stdout.")
    args = parser.parse_args(argv)

    schema = generate_logical_schema()
    rendered = (
        render_sql_ddl(schema, dialect=args.dialect)
        if args.backend == "sql"
        else render_nosql_schema(schema)
    )
    if args.output:
        args.output.write_text(rendered, encoding="utf-8")
    else:
        print(rendered)


if __name__ == "__main__":
    main()
