"""
JSON configuration for a complete cleaning run.

Example configuration:

    {
      "dataset_name": "crocs",
      "input_path": "data/raw/crocs_paleogene.csv",
      "header_lines": 19,
      "columns": [
        {"name": "collection_no", "kind": "integer"},
        {"name": "accepted_name", "kind": "text"},
        {"name": "lat", "kind": "numeric"},
        {"name": "lng", "kind": "numeric"},
        {"name": "max_ma", "kind": "numeric"},
        {"name": "min_ma", "kind": "numeric"},
        {"name": "cc", "kind": "categorical", "domain": ["AR", "NA", "US"]}
      ],
      "completeness": {"lat": "drop-missing", "lng": "drop-missing"},
      "time_binning": {"max_column": "max_ma", "min_column": "min_ma", "scale": "paleogene_stages"},
      "outliers": [{"value_column": "lat", "group_column": "flag_time_bin"}],
      "consistency": [{"column": "genus", "threshold": 0.05}],
      "deduplication": {"keys": ["collection_no", "accepted_name"], "mode": "exact"},
      "output_dir": "data/cleaned"
    }
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import FormatError, ThresholdError
from ..data_loading.occurrence_loader import (
    DUPLICATE_COLUMN_MODES, OccurrenceLoader, reconcile_duplicate_columns,
)
from ..data_loading.schema import TableSchema, schema_from_dicts
from ..data_understanding.time_binning import get_scale
from .completeness import MissingPolicy
from .deduplication import DEDUP_MODES
from .pipeline import CleaningPipeline, write_pipeline_outputs


logger = logging.getLogger(__name__)


@dataclass
class CleaningConfig:
    """Settings for loading, cleaning and writing one occurrence dataset."""
    input_path: Optional[str] = None
    dataset_name: str = "occurrences"
    header_lines: int = 0
    on_duplicate_columns: str = "rename"
    columns: List[Dict[str, Any]] = field(default_factory=list)
    reconcile_columns: List[Dict[str, str]] = field(default_factory=list)
    time_binning: Optional[Dict[str, Any]] = None
    completeness: Dict[str, str] = field(default_factory=dict)
    outliers: List[Dict[str, Any]] = field(default_factory=list)
    consistency: List[Dict[str, Any]] = field(default_factory=list)
    shape_checks: List[Dict[str, Any]] = field(default_factory=list)
    coordinates: Optional[Dict[str, str]] = None
    deduplication: Optional[Dict[str, Any]] = None
    output_dir: str = "data/cleaned"

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CleaningConfig":
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ThresholdError(f"Unknown configuration keys: {unknown}")
        return cls(**data)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "CleaningConfig":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise FormatError(f"Configuration {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise FormatError(f"Configuration {path} must be a JSON object")
        return cls.from_dict(data)

    def validate(self) -> None:
        if not isinstance(self.header_lines, int) or self.header_lines < 0:
            raise ThresholdError(f"header_lines must be a non-negative integer, got {self.header_lines!r}")
        if self.on_duplicate_columns not in DUPLICATE_COLUMN_MODES:
            raise ThresholdError(f"on_duplicate_columns must be one of {DUPLICATE_COLUMN_MODES}")
        for column, policy in self.completeness.items():
            MissingPolicy.parse(policy, column)
        if self.time_binning is not None:
            get_scale(self.time_binning.get('scale', 'paleogene_stages'))
        for entry in self.outliers:
            for key in ('value_column', 'group_column'):
                if key not in entry:
                    raise ThresholdError(f"Outlier entry is missing {key!r}: {entry}")
        for entry in self.consistency:
            if 'column' not in entry:
                raise ThresholdError(f"Consistency entry is missing 'column': {entry}")
        for entry in self.shape_checks:
            if 'column' not in entry:
                raise ThresholdError(f"Shape check entry is missing 'column': {entry}")
        if self.deduplication is not None:
            if not self.deduplication.get('keys'):
                raise ThresholdError("Deduplication requires a non-empty 'keys' list")
            mode = self.deduplication.get('mode', 'exact')
            if mode not in DEDUP_MODES:
                raise ThresholdError(f"Deduplication mode must be one of {DEDUP_MODES}, got {mode!r}")

    def build_schema(self) -> Optional[TableSchema]:
        if not self.columns:
            return None
        return schema_from_dicts(self.columns)

    def build_loader(self) -> OccurrenceLoader:
        # Columns are typed after reconciliation, so the loader reads raw text
        return OccurrenceLoader(self.header_lines, on_duplicate_columns=self.on_duplicate_columns)

    def build_pipeline(self, schema: Optional[TableSchema] = None) -> CleaningPipeline:
        """Translate the configuration into a CleaningPipeline in the standard stage order."""
        schema = schema if schema is not None else self.build_schema()
        pipeline = CleaningPipeline(schema, dataset_name=self.dataset_name)

        if self.completeness:
            pipeline.require_complete(self.completeness)

        if self.time_binning is not None:
            binning = dict(self.time_binning)
            pipeline.assign_time_bins(
                max_column=binning.get('max_column', 'max_ma'),
                min_column=binning.get('min_column', 'min_ma'),
                scale=get_scale(binning.get('scale', 'paleogene_stages')),
                bin_column=binning.get('bin_column', 'flag_time_bin'),
            )

        for entry in self.outliers:
            kwargs = dict(
                value_column=entry['value_column'],
                group_column=entry['group_column'],
                multiplier=entry.get('multiplier', 1.5),
                min_group_size=entry.get('min_group_size', 4),
            )
            if entry.get('exclude_column'):
                pipeline.flag_outliers_excluding(
                    exclude_column=entry['exclude_column'],
                    exclude_values=entry.get('exclude_values', []),
                    **kwargs,
                )
            else:
                pipeline.flag_outliers(**kwargs)

        if self.coordinates is not None:
            pipeline.check_coordinates(
                self.coordinates.get('lat_column', 'lat'), self.coordinates.get('lng_column', 'lng')
            )

        for entry in self.shape_checks:
            expected = entry.get('expected_tokens')
            if isinstance(expected, list):
                expected = tuple(expected)
            pipeline.check_shape(
                entry['column'],
                forbidden_characters=entry.get('forbidden_characters'),
                expected_tokens=expected,
                pattern=entry.get('pattern'),
            )

        for entry in self.consistency:
            pipeline.check_consistency(
                entry['column'],
                threshold=entry.get('threshold', 0.05),
                same_initial=entry.get('same_initial', False),
            )

        if self.deduplication is not None:
            pipeline.deduplicate(self.deduplication['keys'], self.deduplication.get('mode', 'exact'))

        return pipeline


def clean_occurrences(config: Union[CleaningConfig, str, Path],
                      output_dir: Optional[str] = None) -> Dict[str, str]:
    """
    Convenience function to load, clean and write one dataset in one operation.

    Args:
        config: CleaningConfig or path to a JSON configuration file
        output_dir: Optional override of the configured output directory

    Returns:
        Dictionary mapping output names to file paths

    Example:
        ```python
        from palaeo_cleaning.data_cleaning import clean_occurrences

        output_paths = clean_occurrences("configs/crocs.json")
        print("Cleaned data saved to:", output_paths['table_csv'])
        ```
    """
    if not isinstance(config, CleaningConfig):
        config = CleaningConfig.from_json(config)
    if config.input_path is None:
        raise ThresholdError("Configuration has no input_path")

    metadata, df = config.build_loader().load(config.input_path)
    for entry in config.reconcile_columns:
        df = reconcile_duplicate_columns(df, entry['keep'], entry['duplicate'], entry.get('rename_to'))

    schema = config.build_schema()
    if schema is not None:
        df = schema.coerce(df)

    result = config.build_pipeline(schema).run(df)
    paths = write_pipeline_outputs(result, output_dir or config.output_dir, metadata)
    logger.info(f"Cleaning of {config.dataset_name} completed; outputs in {output_dir or config.output_dir}")
    return paths
