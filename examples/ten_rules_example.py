"""
Example: Cleaning Paleogene crocodile occurrences

This example walks through the occurrence cleaning workflow on a Paleobiology
Database export: load the file and its metadata block, drop records without
coordinates, bin records into Paleogene stages, flag palaeolatitude outliers
(with and without North American occurrences), check taxon and formation
names for spelling variants, and remove duplicate occurrences.
"""

import logging

from palaeo_cleaning.data_loading import ColumnSpec, TableSchema, load_occurrences
from palaeo_cleaning.data_cleaning import (
    CleaningPipeline,
    near_duplicate_clusters,
    write_pipeline_outputs,
)


CROCS_SCHEMA = TableSchema.from_specs([
    ColumnSpec("collection_no", "integer"),
    ColumnSpec("accepted_name", "text"),
    ColumnSpec("genus", "text"),
    ColumnSpec("formation", "text", required=False),
    ColumnSpec("lat", "numeric"),
    ColumnSpec("lng", "numeric"),
    ColumnSpec("paleolat", "numeric"),
    ColumnSpec("max_ma", "numeric"),
    ColumnSpec("min_ma", "numeric"),
    # "NA" is Namibia, not a missing value
    ColumnSpec("cc", "categorical", domain=frozenset({"AR", "BR", "CA", "CN", "DE", "FR", "GB", "IN",
                                                      "NA", "PK", "PT", "TN", "US"})),
])


def example_full_pipeline(path: str = "data/raw/crocs_paleogene.csv"):
    """Run every stage and write the outputs."""
    print("=== Full Pipeline Example ===")

    metadata, occdf = load_occurrences(path, header_lines=19, schema=CROCS_SCHEMA)
    print(f"Loaded {occdf.height} occurrences (licence: {metadata.license})")

    pipeline = (
        CleaningPipeline(CROCS_SCHEMA, dataset_name="crocs")
        .require_complete({"lat": "drop-missing", "lng": "drop-missing", "cc": "report-only"})
        .assign_time_bins("max_ma", "min_ma")
        .flag_outliers("paleolat", "flag_time_bin")
        .flag_outliers_excluding("paleolat", "flag_time_bin", "cc", ["US", "CA"])
        .check_coordinates("lat", "lng")
        .check_shape("accepted_name", forbidden_characters='?."', expected_tokens=(1, 2))
        .check_consistency("genus", threshold=0.05, same_initial=True)
        .check_consistency("formation", threshold=0.1)
        .deduplicate(["collection_no", "accepted_name"])
    )
    result = pipeline.run(occdf)

    for column, pairs in result.near_duplicates.items():
        print(f"{column}: review {near_duplicate_clusters(pairs)}")

    output_paths = write_pipeline_outputs(result, "data/cleaned", metadata)
    print(f"Outputs: {output_paths}")


def example_from_config(config_path: str = "configs/crocs.json"):
    """Same run driven by a JSON configuration file."""
    print("\n=== Configuration Example ===")

    from palaeo_cleaning.data_cleaning import clean_occurrences

    output_paths = clean_occurrences(config_path)
    print(f"Outputs: {output_paths}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    example_full_pipeline()
