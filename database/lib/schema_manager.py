"""Database schema management module.

Schema versions live in ``database/schema/vN.py`` as plain dicts. A fresh
database gets the latest version created in one pass; an existing database
gets each newer version's ``migrations`` statements applied in order.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'

class SchemaManager:
    """Manages database schema versioning and migrations."""

    def __init__(self, pool, schema_dir: Path = SCHEMA_DIR) -> None:
        """Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_dir: Directory containing schema version files
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir)
        self.current_version = 0

    async def initialize(self) -> None:
        """Create the schema_version table and apply pending versions.

        Raises:
            DatabaseSchemaError: If no schema files exist or a migration fails
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                ''')
                row = await conn.fetchrow(
                    'SELECT version FROM schema_version ORDER BY version DESC LIMIT 1'
                )
                self.current_version = row['version'] if row else 0

            schema_files = self._load_schema_files()
            if not schema_files:
                raise DatabaseSchemaError("No valid schema files found in schema directory")

            await self._apply_migrations(schema_files)

        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    def _load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Import every vN.py module and return {version: schema}."""
        schema_files = {}

        for file in self._schema_dir.glob('v*.py'):
            try:
                version = int(file.stem[1:])
            except ValueError:
                logger.warning(f"Invalid schema filename: {file}")
                continue

            module = importlib.import_module(f"database.schema.{file.stem}")
            schema = getattr(module, 'schema', None)
            if schema is None:
                raise DatabaseSchemaError(f"Schema file {file} missing 'schema' definition")
            if schema['version'] != version:
                raise DatabaseSchemaError(
                    f"Schema version mismatch in {file}: "
                    f"Expected v{version}, got v{schema['version']}"
                )
            schema_files[version] = schema

        return dict(sorted(schema_files.items()))

    async def _apply_migrations(self, schema_files: Dict[int, Dict[str, Any]]) -> None:
        latest_version = max(schema_files)
        if self.current_version >= latest_version:
            logger.info("Schema is up to date")
            return

        logger.info(f"Updating schema from version {self.current_version} to {latest_version}")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    await self._create_fresh_schema(conn, schema_files[latest_version])
                    return

                for version in range(self.current_version + 1, latest_version + 1):
                    if version not in schema_files:
                        continue
                    for statement in schema_files[version].get('migrations', []):
                        await conn.execute(statement)
                    await conn.execute(
                        'INSERT INTO schema_version (version) VALUES ($1)',
                        version
                    )
                    logger.info(f"Successfully migrated to version {version}")

    async def _create_fresh_schema(self, conn, schema: Dict[str, Any]) -> None:
        # Tables first, then constraints, so foreign keys can point anywhere
        for table in schema.get('tables', []):
            await self._create_table(conn, table)
        for table in schema.get('tables', []):
            await self._add_constraints(conn, table)

        await conn.execute(
            'INSERT INTO schema_version (version) VALUES ($1)',
            schema['version']
        )
        logger.info(f"Successfully created fresh schema version {schema['version']}")

    async def _create_table(self, conn, table: Dict[str, Any]) -> None:
        columns = []
        constraints = []

        for col in table['columns']:
            col_def = f"{col['name']} {col['type']}"
            if 'default' in col:
                col_def += f" DEFAULT {col['default']}"
            if col.get('nullable') is False:
                col_def += " NOT NULL"
            if col.get('primary_key'):
                constraints.append(f"PRIMARY KEY ({col['name']})")
            columns.append(col_def)

        await conn.execute(
            f"CREATE TABLE IF NOT EXISTS {table['name']} ({', '.join(columns + constraints)})"
        )
        logger.info(f"Created table {table['name']}")

    async def _add_constraints(self, conn, table: Dict[str, Any]) -> None:
        for fk in table.get('foreign_keys', []):
            await conn.execute(f'''
                ALTER TABLE {table['name']}
                ADD CONSTRAINT fk_{table['name']}_{fk['columns'][0]}
                FOREIGN KEY ({', '.join(fk['columns'])})
                REFERENCES {fk['references']}
            ''')
            logger.info(f"Added foreign key on {table['name']} referencing {fk['references']}")

        for idx in table.get('indexes', []):
            unique = 'UNIQUE ' if idx.get('unique') else ''
            await conn.execute(
                f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
                f"ON {table['name']} ({', '.join(idx['columns'])})"
            )
            logger.info(f"Created index {idx['name']} on {table['name']}")
