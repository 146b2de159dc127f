"""
Schema descriptor for occurrence tables.

The loader reads every cell as text. A TableSchema declares, per column, what
kind of values the column holds and which markers count as a missing value.
The schema is validated once at load time and then drives the type-aware
missing-value detection used by the completeness filter.

Missing-value policy
--------------------
- numeric / integer: empty cells and the markers ``NA`` / ``NaN`` are missing.
- categorical: a marker is only missing when it is NOT a member of the
  column's known domain. ``NA`` is a valid country code (Namibia), so a ``cc``
  column declared with a domain containing ``NA`` keeps it as a value.
  Without a declared domain only empty cells are missing.
- text: empty cells, plus any markers the caller lists explicitly.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import polars as pl

from ..errors import SchemaError, ThresholdError


FLAG_PREFIX = "flag_"

COLUMN_KINDS = ("text", "categorical", "numeric", "integer")

DEFAULT_NUMERIC_MARKERS: Tuple[str, ...] = ("", "NA", "NaN")
DEFAULT_CATEGORICAL_MARKERS: Tuple[str, ...] = ("", "NA")
DEFAULT_TEXT_MARKERS: Tuple[str, ...] = ("",)

NUMERIC_DTYPES = (
    pl.Float32, pl.Float64,
    pl.Int8, pl.Int16, pl.Int32, pl.Int64,
    pl.UInt8, pl.UInt16, pl.UInt32, pl.UInt64,
)


@dataclass(frozen=True)
class ColumnSpec:
    """Declared type and missing-value markers for a single column."""
    name: str
    kind: str = "text"
    domain: Optional[FrozenSet[str]] = None
    missing_markers: Optional[Tuple[str, ...]] = None
    required: bool = True

    def __post_init__(self):
        if self.kind not in COLUMN_KINDS:
            raise ThresholdError(
                f"Unknown column kind {self.kind!r}; expected one of {COLUMN_KINDS}",
                column=self.name,
            )
        if self.domain is not None and not isinstance(self.domain, frozenset):
            object.__setattr__(self, 'domain', frozenset(self.domain))
        if self.missing_markers is not None and not isinstance(self.missing_markers, tuple):
            object.__setattr__(self, 'missing_markers', tuple(self.missing_markers))

    @property
    def is_numeric(self) -> bool:
        return self.kind in ("numeric", "integer")

    @property
    def markers(self) -> Tuple[str, ...]:
        if self.missing_markers is not None:
            return self.missing_markers
        if self.is_numeric:
            return DEFAULT_NUMERIC_MARKERS
        if self.kind == "categorical":
            return DEFAULT_CATEGORICAL_MARKERS
        return DEFAULT_TEXT_MARKERS

    def effective_markers(self) -> List[str]:
        """Markers that really mean "absent" for this column.

        Categorical markers are only trusted when they can be checked against a
        known domain; a marker that is itself a valid domain code is a value.
        """
        if self.kind == "categorical":
            if self.domain is None:
                return [m for m in self.markers if m == ""]
            return [m for m in self.markers if m not in self.domain]
        return list(self.markers)

    def missing_expr(self) -> pl.Expr:
        col = pl.col(self.name)
        markers = self.effective_markers()
        expr = col.is_null()
        if markers:
            expr = expr | col.is_in(markers)
        return expr


@dataclass
class TableSchema:
    """Ordered collection of ColumnSpec keyed by column name."""
    columns: Dict[str, ColumnSpec] = field(default_factory=dict)

    @classmethod
    def from_specs(cls, specs: Iterable[ColumnSpec]) -> "TableSchema":
        return cls({spec.name: spec for spec in specs})

    def __contains__(self, name: str) -> bool:
        return name in self.columns

    def get(self, name: str) -> Optional[ColumnSpec]:
        return self.columns.get(name)

    def validate(self, df: pl.DataFrame) -> None:
        """Check every required declared column is present in the table."""
        for name, spec in self.columns.items():
            if spec.required and name not in df.columns:
                raise SchemaError("Declared column missing from table", column=name)

    def coerce(self, df: pl.DataFrame) -> pl.DataFrame:
        """Convert declared columns from raw text to their typed representation.

        Missing markers become nulls; any other value that does not parse as
        the declared type raises SchemaError with its row.
        """
        self.validate(df)
        exprs = []
        for name, spec in self.columns.items():
            if name not in df.columns or df.schema[name] != pl.String:
                continue
            if spec.is_numeric:
                exprs.append(self._coerce_numeric(df, spec))
            else:
                exprs.append(
                    pl.when(spec.missing_expr()).then(None).otherwise(pl.col(name)).alias(name)
                )
        if not exprs:
            return df
        return df.with_columns(exprs)

    def _coerce_numeric(self, df: pl.DataFrame, spec: ColumnSpec) -> pl.Expr:
        target = pl.Int64 if spec.kind == "integer" else pl.Float64
        cleaned = pl.when(spec.missing_expr()).then(None).otherwise(pl.col(spec.name).str.strip_chars())
        check = df.select(
            cleaned.alias("raw"),
            cleaned.cast(target, strict=False).alias("typed"),
        ).with_row_index("row")
        bad = check.filter(pl.col("raw").is_not_null() & pl.col("typed").is_null())
        if bad.height > 0:
            first = bad.row(0, named=True)
            raise SchemaError(
                f"Value cannot be read as {spec.kind}",
                column=spec.name, row=first["row"], value=first["raw"],
            )
        return cleaned.cast(target, strict=False).alias(spec.name)


def require_columns(df: pl.DataFrame, columns: Iterable[str]) -> None:
    """Raise SchemaError for the first requested column absent from df."""
    for column in columns:
        if column not in df.columns:
            raise SchemaError("Requested column absent from table", column=column)


def require_numeric(df: pl.DataFrame, column: str) -> None:
    require_columns(df, [column])
    if df.schema[column] not in NUMERIC_DTYPES:
        raise SchemaError(f"Column must be numeric, found {df.schema[column]}", column=column)


def flag_columns(df: pl.DataFrame) -> List[str]:
    return [c for c in df.columns if c.startswith(FLAG_PREFIX)]


def drop_flag_columns(df: pl.DataFrame) -> pl.DataFrame:
    """Return the raw view of a flagged table."""
    return df.drop(flag_columns(df))


def ensure_new_flag(df: pl.DataFrame, flag_name: str) -> None:
    """Flags are additive; refuse to overwrite an existing column."""
    if not flag_name.startswith(FLAG_PREFIX):
        raise SchemaError(f"Flag columns must start with {FLAG_PREFIX!r}", column=flag_name)
    if flag_name in df.columns:
        raise SchemaError("Flag column already exists and would be overwritten", column=flag_name)


def schema_from_dicts(entries: Iterable[Mapping]) -> TableSchema:
    """Build a TableSchema from plain dicts (as found in JSON configuration)."""
    specs = []
    for entry in entries:
        entry = dict(entry)
        if 'name' not in entry:
            raise ThresholdError("Column spec is missing 'name'")
        domain = entry.get('domain')
        markers = entry.get('missing_markers')
        specs.append(ColumnSpec(
            name=entry['name'],
            kind=entry.get('kind', 'text'),
            domain=frozenset(domain) if domain is not None else None,
            missing_markers=tuple(markers) if markers is not None else None,
            required=entry.get('required', True),
        ))
    return TableSchema.from_specs(specs)
