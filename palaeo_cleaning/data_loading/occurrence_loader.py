"""
Occurrence Loader Module

Reads a delimited occurrence export (as produced by the Paleobiology Database
with metadata enabled) into a metadata block and a polars DataFrame.

The export starts with a small key/value block describing the download
(provider, licence, access time, request parameters, record count), followed
by a regular header row and the data rows:

    "Data Provider","The Paleobiology Database"
    "Data License","Creative Commons CC-BY"
    "Access Time","Thu 2025-01-30 10:12:53 GMT"
    "Parameters:"
    "","base_name","Crocodylia"
    "","interval","Paleogene"
    "Records:","886"
    "occurrence_no","record_type",...

The metadata block is kept separate from the table and is never merged into it.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import polars as pl

from ..errors import FormatError
from .schema import TableSchema, require_columns


logger = logging.getLogger(__name__)

# Metadata rows are "key","value" or "","param","value" shaped.
METADATA_MAX_FIELDS = 3
RECORD_COUNT_KEYS = {"records", "record count", "records found", "records returned"}
DUPLICATE_COLUMN_MODES = ("rename", "raise")


@dataclass
class MetadataBlock:
    """Key/value header block prepended to the raw export."""
    entries: Dict[str, str] = field(default_factory=dict)
    parameters: Dict[str, str] = field(default_factory=dict)
    record_count: Optional[int] = None
    raw_lines: List[List[str]] = field(default_factory=list)

    @property
    def license(self) -> Optional[str]:
        return self.entries.get("Data License")

    @property
    def source_url(self) -> Optional[str]:
        return self.entries.get("Data URL")

    @property
    def access_time(self) -> Optional[str]:
        return self.entries.get("Access Time")

    def to_dict(self) -> Dict:
        return asdict(self)


class OccurrenceLoader:
    """
    Loader for occurrence exports with a fixed-size metadata header block.

    Every cell is read as text; if a TableSchema is supplied it is validated and
    used to convert declared columns to typed values, so type decisions happen
    once, here, rather than implicitly while parsing.
    """

    def __init__(self, header_lines: int = 0, schema: Optional[TableSchema] = None,
                 on_duplicate_columns: str = "rename", delimiter: str = ","):
        """
        Initialise the loader.

        Args:
            header_lines: Number of metadata rows preceding the column header row
            schema: Optional schema used to validate and type the loaded table
            on_duplicate_columns: 'rename' to suffix repeated column names with
                their position, 'raise' to reject the file
            delimiter: Field delimiter
        """
        if header_lines < 0:
            raise FormatError(f"header_lines must be >= 0, got {header_lines}")
        if on_duplicate_columns not in DUPLICATE_COLUMN_MODES:
            raise FormatError(
                f"on_duplicate_columns must be one of {DUPLICATE_COLUMN_MODES}, got {on_duplicate_columns!r}"
            )
        self.header_lines = header_lines
        self.schema = schema
        self.on_duplicate_columns = on_duplicate_columns
        self.delimiter = delimiter
        self.logger = logging.getLogger(__name__)

    def load(self, file_path: Union[str, Path]) -> Tuple[MetadataBlock, pl.DataFrame]:
        """
        Load a file into (MetadataBlock, DataFrame).

        Raises:
            FileNotFoundError: If the file does not exist
            FormatError: If the header block or column header is malformed
            SchemaError: If the schema does not match the table
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        with open(file_path, 'r', encoding='utf-8-sig', newline='') as handle:
            text = handle.read()

        metadata, columns, body = self._split(text)
        df = self._read_body(body, columns)

        if metadata.record_count is not None and metadata.record_count != df.height:
            raise FormatError(
                f"Metadata declares {metadata.record_count} records but {df.height} data rows were read; "
                f"check header_lines={self.header_lines}"
            )

        if self.schema is not None:
            df = self.schema.coerce(df)

        self.logger.info(f"Loaded {file_path.name}: {df.height:,} rows x {df.width} columns "
                         f"({len(metadata.entries)} metadata entries)")
        return metadata, df

    def _split(self, text: str) -> Tuple[MetadataBlock, List[str], str]:
        buffer = io.StringIO(text)
        reader = csv.reader(buffer, delimiter=self.delimiter)
        rows = []
        for row in reader:
            rows.append(row)
            if len(rows) == self.header_lines + 1:
                break
        if len(rows) < self.header_lines + 1:
            raise FormatError(
                f"Expected {self.header_lines} metadata rows and a header row, found only {len(rows)} rows"
            )

        metadata = self._parse_metadata(rows[:self.header_lines])
        columns = self._parse_header(rows[self.header_lines])

        # csv.reader pulls one line at a time, so the rest of the buffer is the data block
        body = buffer.read()
        return metadata, columns, body

    def _parse_metadata(self, rows: List[List[str]]) -> MetadataBlock:
        block = MetadataBlock(raw_lines=[list(r) for r in rows])
        for index, row in enumerate(rows):
            fields = [f.strip() for f in row]
            non_empty = [f for f in fields if f]
            if len(non_empty) > METADATA_MAX_FIELDS:
                raise FormatError(
                    f"Metadata row has {len(non_empty)} fields; header_lines={self.header_lines} "
                    f"probably includes the column header",
                    row=index,
                )
            if not non_empty:
                continue
            if fields[0]:
                key = fields[0].rstrip(':').strip()
                value = ", ".join(non_empty[1:])
                block.entries[key] = value
                if key.lower() in RECORD_COUNT_KEYS and value:
                    try:
                        block.record_count = int(value.replace(',', ''))
                    except ValueError as e:
                        raise FormatError("Record count is not an integer", row=index, value=value) from e
            else:
                # Continuation row, e.g. request parameters under "Parameters:"
                key = non_empty[0]
                block.parameters[key] = ", ".join(non_empty[1:])
        return block

    def _parse_header(self, row: List[str]) -> List[str]:
        names = [name.strip() for name in row]
        if not names or not any(names):
            raise FormatError("Column header row is empty", row=self.header_lines)
        if names[0].endswith(':'):
            raise FormatError(
                f"Column header row looks like metadata; header_lines={self.header_lines} is too small",
                row=self.header_lines, value=names[0],
            )
        for position, name in enumerate(names):
            if not name:
                raise FormatError("Empty column name in header", row=self.header_lines, value=position)
        return self._disambiguate(names)

    def _disambiguate(self, names: List[str]) -> List[str]:
        seen = set()
        result = []
        for position, name in enumerate(names):
            if name in seen:
                if self.on_duplicate_columns == "raise":
                    raise FormatError("Duplicate column name in header", column=name, value=position)
                new_name = f"{name}_{position}"
                self.logger.warning(
                    f"Duplicate column {name!r} at position {position} renamed to {new_name!r}; "
                    f"use reconcile_duplicate_columns() to verify and resolve it"
                )
                name = new_name
            seen.add(name)
            result.append(name)
        return result

    def _read_body(self, body: str, columns: List[str]) -> pl.DataFrame:
        if not body.strip():
            return pl.DataFrame(schema={name: pl.String for name in columns})
        self._check_widths(body, len(columns))
        try:
            return pl.read_csv(
                io.BytesIO(body.encode('utf-8')),
                has_header=False,
                new_columns=columns,
                separator=self.delimiter,
                infer_schema=False,
            )
        except (pl.exceptions.ComputeError, pl.exceptions.ShapeError) as e:
            raise FormatError(f"Data rows do not match the {len(columns)}-column header: {e}") from e

    def _check_widths(self, body: str, width: int) -> None:
        # polars pads short rows with nulls, so widths are checked before parsing
        rows = (row for row in csv.reader(io.StringIO(body), delimiter=self.delimiter) if row)
        for index, row in enumerate(rows):
            if len(row) != width:
                raise FormatError(
                    f"Data row has {len(row)} fields but the header has {width} columns",
                    row=index, value=self.delimiter.join(row),
                )


def load_occurrences(file_path: Union[str, Path], header_lines: int = 0,
                     schema: Optional[TableSchema] = None,
                     on_duplicate_columns: str = "rename") -> Tuple[MetadataBlock, pl.DataFrame]:
    """
    Convenience function to load an occurrence export.

    Example:
        ```python
        from palaeo_cleaning.data_loading import load_occurrences

        metadata, occdf = load_occurrences("data/crocs.csv", header_lines=19)
        print(metadata.record_count, occdf.shape)
        ```
    """
    loader = OccurrenceLoader(header_lines, schema=schema, on_duplicate_columns=on_duplicate_columns)
    return loader.load(file_path)


def reconcile_duplicate_columns(df: pl.DataFrame, keep: str, duplicate: str,
                                rename_to: Optional[str] = None) -> pl.DataFrame:
    """
    Resolve a column that appeared twice in the source header.

    The two columns must hold identical values in every row (nulls compare
    equal) before `duplicate` is dropped; `keep` is then optionally renamed to
    its semantic name.

    Raises:
        SchemaError: If either column is absent
        FormatError: If the columns differ in any row
    """
    require_columns(df, [keep, duplicate])
    differs = df.select(
        pl.col(keep).ne_missing(pl.col(duplicate)).alias("differs")
    ).with_row_index("row").filter(pl.col("differs"))
    if differs.height > 0:
        row = differs["row"][0]
        raise FormatError(
            f"Columns {keep!r} and {duplicate!r} are not identical",
            column=duplicate, row=row, value=df[duplicate][row],
        )
    result = df.drop(duplicate)
    if rename_to is not None and rename_to != keep:
        result = result.rename({keep: rename_to})
    logger.info(f"Reconciled duplicate column {duplicate!r} into {rename_to or keep!r}")
    return result


def write_cleaned_table(df: pl.DataFrame, metadata: Optional[MetadataBlock], output_dir: Union[str, Path],
                        stem: str = "occurrences") -> Dict[str, str]:
    """
    Write the cleaned table and its metadata block side by side.

    Returns:
        Dictionary with 'table_csv' and, when metadata is given, 'metadata_json'
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    csv_path = output_dir / f"{stem}_cleaned.csv"
    df.write_csv(csv_path)
    paths = {'table_csv': str(csv_path)}

    if metadata is not None:
        json_path = output_dir / f"{stem}_metadata.json"
        with open(json_path, 'w', encoding='utf-8') as f:
            json.dump(metadata.to_dict(), f, indent=2)
        paths['metadata_json'] = str(json_path)

    logger.info(f"Cleaned table saved: {csv_path} ({df.height:,} rows)")
    return paths
