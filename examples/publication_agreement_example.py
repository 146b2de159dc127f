"""
Example: Agreement between evaluators of published studies

Computes Fleiss' kappa for each reporting criterion from the evaluation form
export and writes the per-criterion tables and plotting data.
"""

import logging

from palaeo_cleaning.publication_evaluation import evaluate_publications, kappa_summary


def example_agreement(path: str = "data/raw/PBDB_publication_evaluation.csv"):
    print("=== Publication Evaluation Agreement ===")

    results = evaluate_publications(path, "data/evaluation", timestamp_format="%Y/%m/%d %H:%M:%S")
    print(kappa_summary(results))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    example_agreement()
