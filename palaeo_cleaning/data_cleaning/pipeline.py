"""
Cleaning Pipeline Module

Chains the cleaning stages over an occurrence table and records provenance
(row counts and flags added at every step). Each stage is a pure function
from table to table; the pipeline runs them in the order they were added and
never reassigns a shared table, so no stage can see or alter the input of an
earlier one.

Typical use follows the occurrence cleaning workflow:

    ```python
    pipeline = (
        CleaningPipeline(schema, dataset_name="crocs")
        .require_complete({"lat": "drop-missing", "lng": "drop-missing"})
        .assign_time_bins("max_ma", "min_ma")
        .flag_outliers("p_lat", "flag_time_bin")
        .check_consistency("genus", threshold=0.05)
        .deduplicate(["collection_no", "accepted_name"])
    )
    result = pipeline.run(occdf)
    ```
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import polars as pl

from ..errors import ThresholdError
from ..data_loading.occurrence_loader import MetadataBlock, write_cleaned_table
from ..data_loading.schema import TableSchema, flag_columns
from ..data_understanding.outlier_analysis import GroupOutlierDetector, OutlierResult, MIN_GROUP_SIZE
from ..data_understanding.time_binning import PALEOGENE_STAGES, TimeInterval, assign_majority_bin
from ..data_understanding.data_report_generator import frequency_table, markdown_table
from .completeness import CompletenessFilter, CompletenessReport, MissingPolicy
from .consistency import (
    ConsistencyChecker, check_coordinates, check_value_shape, near_duplicate_clusters,
    summarise_violations,
)
from .deduplication import DEDUP_MODES, DUPLICATE_FLAG, flag_duplicates, remove_duplicates


StageFunc = Callable[[pl.DataFrame], Tuple[pl.DataFrame, Any]]


@dataclass
class StageRecord:
    """Provenance entry for one executed stage."""
    name: str
    rows_in: int
    rows_out: int
    flags_added: List[str] = field(default_factory=list)

    @property
    def rows_removed(self) -> int:
        return self.rows_in - self.rows_out


@dataclass
class CleaningReport:
    """Create a report of all cleaning operations performed."""
    dataset_name: str
    original_shape: Tuple[int, int]
    cleaned_shape: Tuple[int, int]
    stages: List[StageRecord] = field(default_factory=list)
    missing_values_handled: Dict[str, int] = field(default_factory=dict)
    outliers_flagged: Dict[str, int] = field(default_factory=dict)
    duplicates_removed: int = 0
    duplicates_flagged: int = 0
    near_duplicate_pairs: Dict[str, int] = field(default_factory=dict)
    shape_violations: Dict[str, Dict[str, int]] = field(default_factory=dict)
    data_quality_flags_added: List[str] = field(default_factory=list)
    cleaning_timestamp: str = field(default_factory=lambda: datetime.now().strftime('%Y-%m-%d %H:%M:%S'))

    def provenance_frame(self) -> pl.DataFrame:
        """Row counts before/after each stage as a table."""
        return pl.DataFrame({
            'step': list(range(1, len(self.stages) + 1)),
            'stage': [s.name for s in self.stages],
            'rows_in': [s.rows_in for s in self.stages],
            'rows_out': [s.rows_out for s in self.stages],
            'rows_removed': [s.rows_removed for s in self.stages],
            'flags_added': [", ".join(s.flags_added) for s in self.stages],
        }, schema={
            'step': pl.Int64, 'stage': pl.String, 'rows_in': pl.Int64,
            'rows_out': pl.Int64, 'rows_removed': pl.Int64, 'flags_added': pl.String,
        })


@dataclass
class PipelineResult:
    """Cleaned table plus everything the stages reported."""
    table: pl.DataFrame
    report: CleaningReport
    completeness: List[CompletenessReport] = field(default_factory=list)
    outliers: List[OutlierResult] = field(default_factory=list)
    near_duplicates: Dict[str, pl.DataFrame] = field(default_factory=dict)
    violations: Dict[str, pl.DataFrame] = field(default_factory=dict)
    group_frequencies: Dict[str, pl.DataFrame] = field(default_factory=dict)


@dataclass
class _Stage:
    name: str
    func: StageFunc


class CleaningPipeline:
    """
    Builder for a linear sequence of cleaning stages.

    Every builder method returns the pipeline so calls can be chained. Stage
    functions receive a table and return (new_table, details); details are
    collected into the PipelineResult by type.
    """

    def __init__(self, schema: Optional[TableSchema] = None, dataset_name: str = "occurrences"):
        self.schema = schema
        self.dataset_name = dataset_name
        self.stages: List[_Stage] = []
        self.logger = logging.getLogger(__name__)

    def add_stage(self, name: str, func: StageFunc) -> "CleaningPipeline":
        self.stages.append(_Stage(name, func))
        return self

    def require_complete(self, policies: Mapping[str, Union[str, MissingPolicy]]) -> "CleaningPipeline":
        # Parse now so a bad policy fails before any data is touched
        parsed = {column: MissingPolicy.parse(policy, column) for column, policy in policies.items()}
        completeness = CompletenessFilter(self.schema)
        return self.add_stage("completeness", lambda df: completeness.apply(df, parsed))

    def assign_time_bins(self, max_column: str = "max_ma", min_column: str = "min_ma",
                         scale: Sequence[TimeInterval] = PALEOGENE_STAGES,
                         bin_column: str = "flag_time_bin") -> "CleaningPipeline":
        def stage(df):
            binned = assign_majority_bin(df, max_column, min_column, scale, bin_column)
            return binned, {'frequency': (bin_column, frequency_table(binned, bin_column))}
        return self.add_stage(f"time_bins:{bin_column}", stage)

    def flag_outliers(self, value_column: str, group_column: str, multiplier: float = 1.5,
                      min_group_size: int = MIN_GROUP_SIZE,
                      flag_name: Optional[str] = None) -> "CleaningPipeline":
        detector = GroupOutlierDetector(multiplier, min_group_size)
        return self.add_stage(
            f"outliers:{value_column}",
            lambda df: detector.detect(df, value_column, group_column, flag_name),
        )

    def flag_outliers_excluding(self, value_column: str, group_column: str, exclude_column: str,
                                exclude_values: Sequence[Any], multiplier: float = 1.5,
                                min_group_size: int = MIN_GROUP_SIZE,
                                flag_name: Optional[str] = None) -> "CleaningPipeline":
        detector = GroupOutlierDetector(multiplier, min_group_size)
        exclude_values = list(exclude_values)
        return self.add_stage(
            f"outliers:{value_column}-excluding-{exclude_column}",
            lambda df: detector.recompute_excluding(
                df, value_column, group_column, exclude_column, exclude_values, flag_name
            ),
        )

    def check_consistency(self, column: str, threshold: float = 0.05,
                          same_initial: bool = False) -> "CleaningPipeline":
        checker = ConsistencyChecker(threshold, same_initial)

        def stage(df):
            flagged, pairs = checker.flag_near_duplicates(df, column)
            return flagged, {'near_duplicates': (column, pairs)}
        return self.add_stage(f"consistency:{column}", stage)

    def check_shape(self, column: str, forbidden_characters: Optional[str] = None,
                    expected_tokens: Optional[Union[int, Tuple[int, int]]] = None,
                    pattern: Optional[str] = None) -> "CleaningPipeline":
        def stage(df):
            violations = check_value_shape(df, column, forbidden_characters, expected_tokens, pattern)
            return df, {'violations': (column, violations)}
        return self.add_stage(f"shape:{column}", stage)

    def check_coordinates(self, lat_column: str = "lat", lng_column: str = "lng") -> "CleaningPipeline":
        def stage(df):
            violations = check_coordinates(df, lat_column, lng_column)
            return df, {'violations': (f"{lat_column}/{lng_column}", violations)}
        return self.add_stage(f"coordinates:{lat_column}/{lng_column}", stage)

    def deduplicate(self, keys: Sequence[str], mode: str = "exact") -> "CleaningPipeline":
        if mode not in DEDUP_MODES:
            raise ThresholdError(f"Deduplication mode must be one of {DEDUP_MODES}, got {mode!r}")
        keys = list(keys)
        if mode == "exact":
            def stage(df):
                deduped, removed = remove_duplicates(df, keys)
                return deduped, {'duplicates_removed': removed}
        else:
            def stage(df):
                flagged = flag_duplicates(df, keys)
                return flagged, {'duplicates_flagged': int(flagged[DUPLICATE_FLAG].sum())}
        return self.add_stage(f"deduplicate:{mode}", stage)

    def run(self, df: pl.DataFrame) -> PipelineResult:
        """
        Run every stage in order.

        A failing stage raises immediately; no partial result is returned and
        the input table is left as it was.
        """
        report = CleaningReport(
            dataset_name=self.dataset_name,
            original_shape=df.shape,
            cleaned_shape=df.shape,
        )
        result = PipelineResult(table=df, report=report)
        current = df

        self.logger.info(f"Cleaning {self.dataset_name}: {df.height:,} rows, {len(self.stages)} stages")
        for stage in self.stages:
            columns_before = set(current.columns)
            rows_in = current.height
            try:
                current, details = stage.func(current)
            except Exception:
                self.logger.error(f"Stage {stage.name!r} failed on {rows_in:,} rows")
                raise
            new_flags = [c for c in flag_columns(current) if c not in columns_before]
            report.stages.append(StageRecord(stage.name, rows_in, current.height, new_flags))
            report.data_quality_flags_added.extend(new_flags)
            self._collect(result, details)
            self.logger.info(f"{stage.name}: {rows_in:,} -> {current.height:,} rows")

        result.table = current
        report.cleaned_shape = current.shape
        self.logger.info(
            f"{self.dataset_name} cleaned: {report.original_shape[0]:,} -> {report.cleaned_shape[0]:,} rows"
        )
        return result

    def _collect(self, result: PipelineResult, details: Any) -> None:
        report = result.report
        if isinstance(details, CompletenessReport):
            result.completeness.append(details)
            for column, before in details.missing_before.items():
                if details.policies.get(column) != MissingPolicy.REPORT.value:
                    report.missing_values_handled[column] = report.missing_values_handled.get(column, 0) + before
        elif isinstance(details, OutlierResult):
            result.outliers.append(details)
            report.outliers_flagged[details.flag_column] = details.flagged
        elif isinstance(details, dict):
            if 'duplicates_removed' in details:
                report.duplicates_removed += details['duplicates_removed']
            if 'duplicates_flagged' in details:
                report.duplicates_flagged += details['duplicates_flagged']
            if 'near_duplicates' in details:
                column, pairs = details['near_duplicates']
                result.near_duplicates[column] = pairs
                report.near_duplicate_pairs[column] = pairs.height
            if 'violations' in details:
                column, violations = details['violations']
                result.violations[column] = violations
                report.shape_violations[column] = summarise_violations(violations)
            if 'frequency' in details:
                column, table = details['frequency']
                result.group_frequencies[column] = table


def generate_cleaning_report(result: PipelineResult, output_path: Union[str, Path],
                             metadata: Optional[MetadataBlock] = None) -> str:
    """
    Write a Markdown provenance report for a pipeline run.

    Returns:
        Path to the generated report file
    """
    report = result.report
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"# Data Cleaning Report: {report.dataset_name}",
        "",
        f"**Generated on:** {report.cleaning_timestamp}",
        f"**Original shape:** {report.original_shape[0]:,} rows x {report.original_shape[1]} columns",
        f"**Cleaned shape:** {report.cleaned_shape[0]:,} rows x {report.cleaned_shape[1]} columns",
        "",
    ]

    if metadata is not None:
        lines.extend(["## Source", ""])
        for key in ("Data Provider", "Data License", "Data URL", "Access Time"):
            if key in metadata.entries:
                lines.append(f"- **{key}:** {metadata.entries[key]}")
        if metadata.record_count is not None:
            lines.append(f"- **Declared records:** {metadata.record_count:,}")
        for key, value in metadata.parameters.items():
            lines.append(f"- Parameter `{key}`: {value}")
        lines.append("")

    lines.extend(["## Provenance", ""])
    lines.extend(markdown_table(report.provenance_frame()))
    lines.append("")

    if result.completeness:
        lines.extend(["## Missing Values", "", "| Column | Policy | Missing before | Missing after |",
                      "| ------ | ------ | -------------- | ------------- |"])
        for comp in result.completeness:
            for column, before in comp.missing_before.items():
                lines.append(f"| {column} | {comp.policies[column]} | {before:,} | {comp.missing_after[column]:,} |")
        lines.append("")

    if result.group_frequencies:
        lines.extend(["## Group Frequencies", ""])
        for column, table in result.group_frequencies.items():
            lines.extend([f"### {column}", ""])
            lines.extend(markdown_table(table))
            lines.append("")

    if result.outliers:
        lines.extend(["## Outliers (advisory flags, no records removed)", ""])
        for outlier_result in result.outliers:
            lines.extend(outlier_result.markdown_section())

    if result.near_duplicates:
        lines.extend(["## Near-duplicate Values (for manual review)", ""])
        for column, pairs in result.near_duplicates.items():
            clusters = near_duplicate_clusters(pairs)
            lines.append(f"### {column}: {pairs.height} pairs, {len(clusters)} clusters")
            lines.append("")
            for members in clusters:
                lines.append(f"- {' / '.join(members)}")
            lines.append("")

    if result.violations:
        lines.extend(["## Value Shape Checks", ""])
        for column, counts in report.shape_violations.items():
            if counts:
                summary = ", ".join(f"{issue}: {n:,}" for issue, n in counts.items())
                lines.append(f"- **{column}**: {summary}")
            else:
                lines.append(f"- **{column}**: no violations")
        lines.append("")

    lines.extend([
        "## Duplicates",
        "",
        f"- Records removed: {report.duplicates_removed:,}",
        f"- Records flagged for review: {report.duplicates_flagged:,}",
        "",
        "---",
        "",
        "_Report generated by palaeo_cleaning_",
    ])

    with open(output_path, 'w', encoding='utf-8') as f:
        f.write('\n'.join(lines))
    return str(output_path)


def write_pipeline_outputs(result: PipelineResult, output_dir: Union[str, Path],
                           metadata: Optional[MetadataBlock] = None) -> Dict[str, str]:
    """
    Write the cleaned table, metadata, provenance and review files.

    Returns:
        Dictionary mapping output names to file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = result.report.dataset_name

    paths = write_cleaned_table(result.table, metadata, output_dir, stem)

    provenance_path = output_dir / f"{stem}_provenance.csv"
    result.report.provenance_frame().write_csv(provenance_path)
    paths['provenance_csv'] = str(provenance_path)

    for column, pairs in result.near_duplicates.items():
        safe = column.replace('/', '_')
        pairs_path = output_dir / f"{stem}_near_duplicates_{safe}.csv"
        pairs.write_csv(pairs_path)
        paths[f'near_duplicates_{safe}'] = str(pairs_path)

    violations = [v for v in result.violations.values() if v.height > 0]
    if violations:
        violations_path = output_dir / f"{stem}_violations.csv"
        pl.concat(violations).write_csv(violations_path)
        paths['violations_csv'] = str(violations_path)

    paths['cleaning_report'] = generate_cleaning_report(
        result, output_dir / f"{stem}_cleaning_report.md", metadata
    )
    return paths
