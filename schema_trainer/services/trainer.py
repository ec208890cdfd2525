"""Schema training engine.

Walks the selected schemas and tables of one target database through its
dialect adapter and assembles a ``SchemaData`` document. Schemas are
processed sequentially to bound load on the target and keep progress
monotonic. A failed fetch for one table degrades that table's metadata
and is recorded as a warning; only failing to enumerate schemas aborts
the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from uuid import UUID

from schema_trainer.exceptions import IntrospectionError, PerTableIntrospectionError
from schema_trainer.introspection import ADAPTERS, AdapterRegistry, IntrospectionAdapter, get_adapter_class
from schema_trainer.schemas.schema_data import SchemaData, SchemaMetadata, TableMetadata, TrainingOptions
from schema_trainer.services.connections import ConnectionService

logger = logging.getLogger(__name__)

# [0, 10) is reserved for setup and (90, 100] for persistence
SETUP_PERCENTAGE = 10.0
TRAVERSAL_END_PERCENTAGE = 90.0

ProgressCallback = Callable[..., None]


def _no_progress(*args, **kwargs):
    pass


@dataclass
class TrainingRun:
    """Mutable state of one training run, discarded when it returns."""

    connection_id: UUID
    options: TrainingOptions
    total_schemas: int = 0
    processed_schemas: int = 0
    total_tables: int = 0  # in the current schema
    processed_tables: int = 0  # in the current schema
    tables_done: int = 0
    warnings: List[str] = field(default_factory=list)

    def percentage(self) -> float:
        """Two-level progress: each schema gets an equal share of the traversal band.

        A schema with many tables advances progress no faster overall than a
        schema with few.
        """
        if self.total_schemas == 0:
            return TRAVERSAL_END_PERCENTAGE
        share = (TRAVERSAL_END_PERCENTAGE - SETUP_PERCENTAGE) / self.total_schemas
        within = self.processed_tables / self.total_tables if self.total_tables else 0.0
        value = SETUP_PERCENTAGE + share * (self.processed_schemas + within)
        return min(TRAVERSAL_END_PERCENTAGE, max(SETUP_PERCENTAGE, value))


class SchemaTrainer:
    """Produces ``SchemaData`` for a connection."""

    def __init__(self, connections: ConnectionService, adapters: AdapterRegistry = ADAPTERS):
        self.connections = connections
        self.adapters = adapters

    def train(
        self,
        connection_id: UUID,
        options: Optional[TrainingOptions] = None,
        report_progress: Optional[ProgressCallback] = None,
    ) -> SchemaData:
        """Introspect the target database behind ``connection_id``.

        Args:
            connection_id: Saved connection to train
            options: Schema/table selection and metadata switches
            report_progress: Called as ``report_progress(percentage, message, current=...)``

        Returns:
            The assembled document; ``warnings`` lists every degraded fetch

        Raises:
            ConnectionNotFoundError: unknown connection
            UnsupportedDatabaseError: no adapter for the connection's dialect
            TargetUnavailableError: target unreachable
            IntrospectionError: schemas could not be enumerated
        """
        options = options or TrainingOptions()
        report = report_progress or _no_progress
        config = self.connections.get_connection(connection_id)
        adapter_class = get_adapter_class(config.db_type, self.adapters)
        run = TrainingRun(connection_id=connection_id, options=options)

        logger.info(f"Training schema for connection {connection_id} ({config.db_type})")
        with self.connections.open_target(config) as connection:
            adapter = adapter_class(connection)
            schema_names = self._resolve_schemas(adapter, run)
            run.total_schemas = len(schema_names)
            report(SETUP_PERCENTAGE, f"Found {run.total_schemas} schema(s)")

            schemas = []
            for schema_name in schema_names:
                schema = self._train_schema(adapter, schema_name, run, report)
                if schema is not None:
                    schemas.append(schema)
                run.processed_schemas += 1
                run.total_tables = run.processed_tables = 0
                report(run.percentage(), f"Processed schema {schema_name}", current=run.tables_done)

            version = self._get_version(adapter)

        data = SchemaData(
            schemas=schemas,
            total_tables=sum(len(schema.tables) for schema in schemas),
            total_columns=sum(len(table.columns) for schema in schemas for table in schema.tables),
            database_type=config.db_type,
            version=version,
            warnings=run.warnings,
        )
        logger.info(
            f"Schema training for {connection_id} found {data.total_tables} tables, "
            f"{data.total_columns} columns ({len(run.warnings)} warning(s))"
        )
        return data

    def _resolve_schemas(self, adapter: IntrospectionAdapter, run: TrainingRun) -> List[str]:
        try:
            available = adapter.list_schemas()
        except Exception as e:
            logger.error(f"Cannot enumerate schemas for {run.connection_id}: {e.__class__.__name__}")
            raise IntrospectionError("Could not enumerate schemas on the target database") from None

        if not run.options.schemas:
            return available
        for missing in sorted(set(run.options.schemas) - set(available)):
            run.warnings.append(f"Schema {missing} not found")
        return [name for name in available if name in run.options.schemas]

    def _train_schema(self, adapter, schema_name: str, run: TrainingRun, report) -> Optional[SchemaMetadata]:
        try:
            available = adapter.list_tables(schema_name)
        except Exception as e:
            logger.warning(f"Skipping schema {schema_name}: cannot list tables ({e.__class__.__name__})")
            run.warnings.append(f"Failed to list tables for schema {schema_name}")
            return None

        selected = run.options.selected_tables(schema_name)
        if selected:
            for missing in sorted(set(selected) - set(available)):
                run.warnings.append(f"Table {schema_name}.{missing} not found")
            table_names = [name for name in available if name in selected]
        else:
            table_names = available

        run.total_tables = len(table_names)
        run.processed_tables = 0
        tables = []
        for table_name in table_names:
            tables.append(self._train_table(adapter, schema_name, table_name, run))
            run.processed_tables += 1
            run.tables_done += 1
            report(run.percentage(), f"Processed table {schema_name}.{table_name}", current=run.tables_done)

        return SchemaMetadata(name=schema_name, tables=tables)

    def _train_table(self, adapter, schema: str, table: str, run: TrainingRun) -> TableMetadata:
        options = run.options
        metadata = TableMetadata(name=table, schema_name=schema)
        if options.include_columns:
            metadata.columns = self._fetch(run, schema, table, "columns", adapter.get_columns, [])
        if options.include_indexes:
            metadata.indexes = self._fetch(run, schema, table, "indexes", adapter.get_indexes, [])
        if options.include_foreign_keys:
            metadata.foreign_keys = self._fetch(run, schema, table, "foreign keys", adapter.get_foreign_keys, [])
        if options.include_row_counts:
            metadata.row_count = self._fetch(run, schema, table, "row count", adapter.estimate_row_count, None)
        return metadata

    def _fetch(self, run: TrainingRun, schema: str, table: str, component: str, fetch, default):
        try:
            return fetch(schema, table)
        except Exception as e:
            gap = PerTableIntrospectionError(schema, table, component)
            logger.warning(f"{gap.message} ({e.__class__.__name__})")
            run.warnings.append(gap.message)
            return default

    def _get_version(self, adapter: IntrospectionAdapter) -> Optional[str]:
        try:
            return adapter.get_version()
        except Exception as e:
            logger.debug(f"Version query failed: {e.__class__.__name__}")
            return None
