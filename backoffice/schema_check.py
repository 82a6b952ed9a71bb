"""Compare the live database against the ORM models and print the SQL to fix it.

Direct mode inspects the database over ``DATABASE_URL``. Hosted mode only has the
REST surface, so it tests each column with a ``{column: null}`` insert and reads
the error text. Either way the output is plain SQL meant to be pasted into the
hosted SQL editor, or run with ``--apply`` when the direct connection is allowed
to alter tables.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field

from sqlalchemy import Column, Enum as SQLEnum, MetaData, Table, inspect, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Engine
from sqlalchemy.schema import CreateTable

from backoffice.errors import (
    NOT_NULL_RE,
    BackendRequestError,
    ColumnMissingError,
    TableMissingError,
    classify_backend_error,
)
from backoffice.logging_setup import configure_logging
from backoffice.models import Base

logger = logging.getLogger(__name__)

PG_DIALECT = postgresql.dialect()


@dataclass
class SchemaReport:
    missing_tables: list[str] = field(default_factory=list)
    missing_columns: dict[str, list[str]] = field(default_factory=dict)
    required_columns: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_clean(self) -> bool:
        return not self.missing_tables and not any(self.missing_columns.values())


def expected_tables(metadata: MetaData = Base.metadata, only: list[str] | None = None) -> list[Table]:
    tables = list(metadata.sorted_tables)
    if only:
        wanted = set(only)
        unknown = wanted - {t.name for t in tables}
        if unknown:
            raise ValueError(f'Unknown tables: {", ".join(sorted(unknown))}')
        tables = [t for t in tables if t.name in wanted]
    return tables


def check_direct(engine: Engine, tables: list[Table]) -> SchemaReport:
    inspector = inspect(engine)
    existing = set(inspector.get_table_names())
    report = SchemaReport()
    for table in tables:
        if table.name not in existing:
            report.missing_tables.append(table.name)
            continue
        present = {col['name'] for col in inspector.get_columns(table.name)}
        missing = [col.name for col in table.columns if col.name not in present]
        if missing:
            report.missing_columns[table.name] = missing
    return report


def check_column(client, table: str, column: str) -> str:
    """Return 'present', 'missing', 'table_missing' or 'required' for one column."""
    try:
        rows = client.insert(table, {column: None})
    except BackendRequestError as exc:
        classified = classify_backend_error(exc.message)
        if isinstance(classified, ColumnMissingError):
            return 'missing'
        if isinstance(classified, TableMissingError):
            return 'table_missing'
        match = NOT_NULL_RE.search(exc.message)
        if match and match.group(1) == column:
            return 'required'
        return 'present'
    # The test row went in; take it back out.
    for row in rows or []:
        if row.get('id') is not None:
            client.delete(table, filters={'id': row['id']})
    return 'present'


def check_hosted(client, tables: list[Table]) -> SchemaReport:
    report = SchemaReport()
    for table in tables:
        missing: list[str] = []
        required: list[str] = []
        for col in table.columns:
            outcome = check_column(client, table.name, col.name)
            if outcome == 'table_missing':
                report.missing_tables.append(table.name)
                break
            if outcome == 'missing':
                missing.append(col.name)
            elif outcome == 'required':
                required.append(col.name)
            logger.debug('%s.%s: %s', table.name, col.name, outcome)
        else:
            if missing:
                report.missing_columns[table.name] = missing
            if required:
                report.required_columns[table.name] = required
    return report


def _default_sql(column: Column) -> str | None:
    if column.server_default is None:
        return None
    arg = getattr(column.server_default, 'arg', None)
    if arg is None:
        return None
    if hasattr(arg, 'compile'):
        return str(arg.compile(dialect=PG_DIALECT))
    return f"'{arg}'"


def add_column_sql(table: Table, column: Column) -> str:
    ddl = f'ALTER TABLE {table.name} ADD COLUMN IF NOT EXISTS {column.name} {column.type.compile(dialect=PG_DIALECT)}'
    default = _default_sql(column)
    if default:
        ddl += f' DEFAULT {default}'
    return ddl + ';'


def create_enum_sql(enum_type: SQLEnum) -> str:
    labels = ', '.join(f"'{label}'" for label in enum_type.enums)
    return (
        f'DO $$ BEGIN CREATE TYPE {enum_type.name} AS ENUM ({labels}); '
        'EXCEPTION WHEN duplicate_object THEN NULL; END $$;'
    )


def render_sql(report: SchemaReport, tables: list[Table]) -> list[str]:
    by_name = {t.name: t for t in tables}
    columns_needed = [col for name in report.missing_tables for col in by_name[name].columns]
    for table_name, names in report.missing_columns.items():
        columns_needed.extend(by_name[table_name].columns[name] for name in names)

    statements: list[str] = []
    seen_enums: set[str] = set()
    for col in columns_needed:
        if isinstance(col.type, SQLEnum) and col.type.name and col.type.name not in seen_enums:
            seen_enums.add(col.type.name)
            statements.append(create_enum_sql(col.type))

    statements.extend(
        str(CreateTable(by_name[name]).compile(dialect=PG_DIALECT)).strip() + ';' for name in report.missing_tables
    )
    for table_name, columns in report.missing_columns.items():
        table = by_name[table_name]
        statements.extend(add_column_sql(table, table.columns[name]) for name in columns)
    return statements


def apply_sql(engine: Engine, statements: list[str]) -> None:
    with engine.begin() as conn:
        for statement in statements:
            logger.info('Applying: %s', statement.splitlines()[0])
            conn.execute(text(statement))


def main() -> None:
    parser = argparse.ArgumentParser(description='Check the database schema against the back-office models.')
    parser.add_argument('--mode', choices=['direct', 'hosted'], default='direct')
    parser.add_argument('--table', action='append', dest='tables', help='Limit the check to this table (repeatable).')
    parser.add_argument('--apply', action='store_true', help='Run the generated SQL (direct mode only).')
    args = parser.parse_args()
    configure_logging()

    tables = expected_tables(only=args.tables)
    if args.mode == 'direct':
        from backoffice.db import engine

        report = check_direct(engine, tables)
    else:
        if args.apply:
            parser.error('--apply needs --mode direct')
        from backoffice.supabase_client import SupabaseClient

        report = check_hosted(SupabaseClient(), tables)

    for table_name, columns in report.required_columns.items():
        print(f'-- {table_name} requires: {", ".join(columns)}')
    if report.is_clean:
        print('Schema check complete: no missing tables or columns')
        return

    statements = render_sql(report, tables)
    print('\n\n'.join(statements))
    if args.apply:
        apply_sql(engine, statements)
        print(f'Applied {len(statements)} statements')


if __name__ == '__main__':
    main()
