"""
Configuration system for schemasync using Pydantic.

A configuration file names the database to synchronize and declares the
target schema. Table declarations are turned into ``TargetTable`` objects
with every foreign key and index name resolved, so the reconciler only
ever sees final names.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Set, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.connection import ConnectionConfig
from .exceptions import ConfigurationError
from .schema.target import TargetColumn, TargetForeignKey, TargetIndex, TargetTable


class DatabaseConnection(BaseModel):
    """Database connection configuration."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field("", description="Database password")
    ssl_mode: Optional[str] = Field(None, description="SSL mode")
    command_timeout: float = Field(60.0, description="Command timeout in seconds")

    def to_connection_config(self) -> ConnectionConfig:
        """Build the pool configuration; a sync run needs a single connection."""
        return ConnectionConfig(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            ssl_mode=self.ssl_mode,
            command_timeout=self.command_timeout,
            min_size=1,
            max_size=1,
        )


class ColumnSpec(BaseModel):
    """Declared column."""

    name: str = Field(..., description="Column name")
    type: str = Field(..., description="Declared column type")
    length: Optional[int] = Field(None, description="Character length")
    precision: Optional[int] = Field(None, description="Numeric precision")
    scale: Optional[int] = Field(None, description="Numeric scale")
    nullable: bool = Field(False, description="Allow NULL values")
    primary: bool = Field(False, description="Part of the primary key")
    generated: bool = Field(False, description="Value generated by the database")
    default: Optional[str] = Field(None, description="Default value as SQL expression")
    comment: Optional[str] = Field(None, description="Column comment")

    def to_target(self) -> TargetColumn:
        return TargetColumn(
            name=self.name,
            type=self.type,
            length=self.length,
            precision=self.precision,
            scale=self.scale,
            is_nullable=self.nullable,
            is_primary=self.primary,
            is_generated=self.generated,
            default=self.default,
            comment=self.comment,
        )


class ForeignKeySpec(BaseModel):
    """Declared foreign key."""

    name: Optional[str] = Field(None, description="Constraint name")
    columns: List[str] = Field(..., description="Local columns")
    references: str = Field(..., description="Referenced table")
    referenced_columns: List[str] = Field(..., description="Referenced columns")
    on_delete: Optional[
        Literal["CASCADE", "SET NULL", "SET DEFAULT", "RESTRICT", "NO ACTION"]
    ] = Field(None, description="Referential action on delete")

    @field_validator("on_delete", mode="before")
    @classmethod
    def upper_on_delete(cls, v):
        return v.upper() if isinstance(v, str) else v


class IndexSpec(BaseModel):
    """Declared index."""

    name: Optional[str] = Field(None, description="Index name")
    columns: List[str] = Field(..., description="Indexed columns")
    unique: bool = Field(False, description="Unique index")


class TableSpec(BaseModel):
    """Declared table."""

    name: str = Field(..., description="Table name")
    columns: List[ColumnSpec] = Field(default_factory=list, description="Columns")
    foreign_keys: List[ForeignKeySpec] = Field(
        default_factory=list, description="Foreign keys"
    )
    indices: List[IndexSpec] = Field(default_factory=list, description="Indices")

    @property
    def column_names(self) -> Set[str]:
        return {c.name for c in self.columns}

    def to_target(self) -> TargetTable:
        """Convert to a target table, naming unnamed keys and indices."""
        return TargetTable(
            name=self.name,
            columns=[c.to_target() for c in self.columns],
            foreign_keys=[
                TargetForeignKey(
                    name=fk.name or foreign_key_name(self.name, fk.columns),
                    table_name=self.name,
                    column_names=list(fk.columns),
                    referenced_table_name=fk.references,
                    referenced_column_names=list(fk.referenced_columns),
                    on_delete=fk.on_delete,
                )
                for fk in self.foreign_keys
            ],
            indices=[
                TargetIndex(
                    name=index.name or index_name(self.name, index.columns),
                    table_name=self.name,
                    column_names=list(index.columns),
                    is_unique=index.unique,
                )
                for index in self.indices
            ],
        )


def foreign_key_name(table: str, columns: List[str]) -> str:
    """Default foreign key name."""
    return f"fk_{table}_{'_'.join(columns)}"


def index_name(table: str, columns: List[str]) -> str:
    """Default index name."""
    return f"idx_{table}_{'_'.join(columns)}"


class SyncConfig(BaseModel):
    """Schema synchronization configuration."""

    schema_name: str = Field("public", alias="schema", description="Database schema")
    dry_run: bool = Field(
        False, description="Apply changes inside a transaction, then roll back"
    )

    model_config = ConfigDict(populate_by_name=True)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    console: bool = Field(True, description="Log to stderr")
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class SchemaSyncConfig(BaseSettings):
    """Main schemasync configuration."""

    database: DatabaseConnection = Field(..., description="Database connection")
    sync: SyncConfig = Field(default_factory=SyncConfig, description="Sync options")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    tables: List[TableSpec] = Field(
        default_factory=list, description="Target schema tables"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SCHEMASYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SchemaSyncConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def validate_config(self) -> None:
        """Validate the target schema for consistency."""
        tables: Dict[str, TableSpec] = {}
        for table in self.tables:
            if table.name in tables:
                raise ConfigurationError(f"Table '{table.name}' is declared twice")
            tables[table.name] = table

        for table in self.tables:
            seen: Set[str] = set()
            for column in table.columns:
                if column.name in seen:
                    raise ConfigurationError(
                        f"Column '{column.name}' is declared twice in table '{table.name}'"
                    )
                seen.add(column.name)

            for fk in table.foreign_keys:
                if len(fk.columns) != len(fk.referenced_columns):
                    raise ConfigurationError(
                        f"Foreign key on {table.name}({', '.join(fk.columns)}) has "
                        f"{len(fk.columns)} columns but references {len(fk.referenced_columns)}"
                    )
                self._check_columns(table, fk.columns, "foreign key")

                referenced = tables.get(fk.references)
                if referenced is None:
                    raise ConfigurationError(
                        f"Table '{table.name}' references unknown table '{fk.references}'"
                    )
                self._check_columns(referenced, fk.referenced_columns, "referenced column")

            for index in table.indices:
                self._check_columns(table, index.columns, "index")

        # Resolved names must be unique per table
        for target in self.target_tables():
            for kind, names in (
                ("foreign key", [fk.name for fk in target.foreign_keys]),
                ("index", [index.name for index in target.indices]),
            ):
                duplicates = {name for name in names if names.count(name) > 1}
                if duplicates:
                    raise ConfigurationError(
                        f"Duplicate {kind} names in table '{target.name}': "
                        f"{', '.join(sorted(duplicates))}"
                    )

    @staticmethod
    def _check_columns(table: TableSpec, columns: List[str], kind: str) -> None:
        missing = [c for c in columns if c not in table.column_names]
        if missing:
            raise ConfigurationError(
                f"Unknown {kind} columns in table '{table.name}': {', '.join(missing)}"
            )

    def target_tables(self) -> List[TargetTable]:
        """Convert the declared tables to the reconciler's target model."""
        return [table.to_target() for table in self.tables]

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True, by_alias=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )
