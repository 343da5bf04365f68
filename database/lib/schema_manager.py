"""Schema versioning for the local stand-in backend.

Schema files live in ``database/schema`` as ``vN.py`` modules exposing a
``schema`` dict. A fresh database gets the newest definition rendered as one
statement plan; an older one replays each newer file's ``migrations`` list.
The hosted backend is never touched by this module.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'
SCHEMA_PACKAGE = 'database.schema'

VERSION_TABLE_SQL = (
    "CREATE TABLE IF NOT EXISTS schema_version ("
    "version INT8 PRIMARY KEY, applied_at TIMESTAMPTZ NOT NULL DEFAULT now())"
)
CURRENT_VERSION_SQL = 'SELECT version FROM schema_version ORDER BY version DESC LIMIT 1'
RECORD_VERSION_SQL = 'INSERT INTO schema_version (version) VALUES ($1)'

def build_create_table(table: Dict[str, Any]) -> str:
    """Render the CREATE TABLE statement for a table definition."""
    columns = []
    constraints = []

    for col in table['columns']:
        col_def = f"{col['name']} {col['type']}"

        if col.get('primary_key'):
            constraints.append(f"PRIMARY KEY ({col['name']})")
        elif col.get('unique'):
            constraints.append(f"UNIQUE ({col['name']})")

        if 'default' in col:
            col_def += f" DEFAULT {col['default']}"

        if col.get('nullable') is False:
            col_def += " NOT NULL"

        columns.append(col_def)

    # Composite primary key
    if isinstance(table.get('primary_key'), list):
        constraints.append(f"PRIMARY KEY ({', '.join(table['primary_key'])})")

    for unique in table.get('unique', []):
        constraints.append(f"UNIQUE ({', '.join(unique)})")

    return f"CREATE TABLE IF NOT EXISTS {table['name']} ({', '.join(columns + constraints)})"

def build_constraints(table: Dict[str, Any]) -> List[str]:
    """Foreign keys and indexes for a table, in creation order."""
    statements = []
    name = table['name']

    for fk in table.get('foreign_keys', []):
        statements.append(
            f"ALTER TABLE {name} ADD CONSTRAINT fk_{name}_{fk['columns'][0]} "
            f"FOREIGN KEY ({', '.join(fk['columns'])}) REFERENCES {fk['references']}"
        )

    for idx in table.get('indexes', []):
        unique = 'UNIQUE ' if idx.get('unique') else ''
        where = f" WHERE {idx['where']}" if 'where' in idx else ''
        statements.append(
            f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
            f"ON {name} ({', '.join(idx['columns'])}){where}"
        )

    return statements

def build_trigger(trigger: Dict[str, Any]) -> List[str]:
    """The plpgsql function behind a trigger, then the trigger itself."""
    return [
        f"CREATE OR REPLACE FUNCTION {trigger['function_name']}() RETURNS TRIGGER "
        f"AS $${trigger['function_body']}$$ LANGUAGE plpgsql",
        f"DROP TRIGGER IF EXISTS {trigger['name']} ON {trigger['table']}",
        f"CREATE TRIGGER {trigger['name']} {trigger['timing']} {trigger['event']} "
        f"ON {trigger['table']} FOR EACH ROW EXECUTE FUNCTION {trigger['function_name']}()",
    ]

def plan_fresh_install(schema: Dict[str, Any]) -> List[str]:
    """Every statement needed to build ``schema`` on an empty database.

    Tables come first so foreign keys may point at any of them; the remote
    procedures follow, then triggers, which may depend on both.
    """
    tables = schema.get('tables', [])
    plan = [build_create_table(table) for table in tables]
    for table in tables:
        plan.extend(build_constraints(table))
    plan.extend(function['definition'] for function in schema.get('functions', []))
    for trigger in schema.get('triggers', []):
        plan.extend(build_trigger(trigger))
    return plan

class SchemaManager:
    """Installs and migrates the schema described by ``database/schema``."""

    def __init__(self, pool, schema_dir: Optional[Path] = None) -> None:
        self.pool = pool
        self._schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self.current_version = 0
        self._schema_files: Dict[int, Dict[str, Any]] = {}

    async def initialize(self) -> None:
        """Bring the database up to the newest schema version.

        Raises:
            DatabaseSchemaError: If no schema file is found or a statement fails
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(VERSION_TABLE_SQL)
                row = await conn.fetchrow(CURRENT_VERSION_SQL)
                self.current_version = row['version'] if row else 0

            schema_files = self.load_schema_files()
            if not schema_files:
                raise DatabaseSchemaError("No valid schema files found in schema directory")

            await self._apply(schema_files)

        except DatabaseSchemaError as e:
            logger.error(f"Schema initialization failed: {e}")
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    def load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Import every ``vN.py`` file, keyed and sorted by version.

        Raises:
            DatabaseSchemaError: If a file lacks ``schema`` or declares another version
        """
        schema_files = {}

        if not self._schema_dir.exists():
            return schema_files

        for file in self._schema_dir.glob('v*.py'):
            try:
                version = int(file.stem[1:])
            except ValueError:
                logger.warning(f"Ignoring schema file with no version number: {file.name}")
                continue

            module = importlib.import_module(f"{SCHEMA_PACKAGE}.{file.stem}")
            schema = getattr(module, 'schema', None)
            if schema is None:
                raise DatabaseSchemaError(f"Schema file {file.name} has no 'schema' definition")
            if schema.get('version') != version:
                raise DatabaseSchemaError(
                    f"Schema file {file.name} declares version {schema.get('version')}"
                )

            schema_files[version] = schema

        self._schema_files = dict(sorted(schema_files.items()))
        return self._schema_files

    async def _apply(self, schema_files: Dict[int, Dict[str, Any]]) -> None:
        latest_version = max(schema_files)
        if self.current_version >= latest_version:
            logger.info(f"Schema is up to date at version {self.current_version}")
            return

        async with self.pool.acquire() as conn:
            if self.current_version == 0:
                logger.info(f"Installing schema version {latest_version}")
                for statement in plan_fresh_install(schema_files[latest_version]):
                    await conn.execute(statement)
                await conn.execute(RECORD_VERSION_SQL, latest_version)
            else:
                for version in range(self.current_version + 1, latest_version + 1):
                    if version not in schema_files:
                        continue
                    logger.info(f"Migrating schema to version {version}")
                    for statement in schema_files[version].get('migrations', []):
                        await conn.execute(statement)
                    await conn.execute(RECORD_VERSION_SQL, version)

        self.current_version = latest_version
        logger.info(f"Schema now at version {latest_version}")

    async def drop_all_tables(self) -> None:
        """Drop every table in the public schema, schema_version included."""
        async with self.pool.acquire() as conn:
            tables = await conn.fetch(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = 'public' AND table_type = 'BASE TABLE'"
            )
            for table in tables:
                await conn.execute(f'DROP TABLE IF EXISTS "{table["table_name"]}" CASCADE')
                logger.info(f"Dropped table {table['table_name']}")
        self.current_version = 0
