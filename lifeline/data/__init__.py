"""
Data Module

Utilities for loading and validating the labelled crisis sample set used
for accuracy checks, the demo runner and latency benchmarks.
"""

from lifeline.data.loader import (
    DEFAULT_DATASET_PATH,
    Sample,
    DatasetLoader,
    DatasetMetadata,
    ValidationResult,
    get_dataset_loader,
)

__all__ = [
    "DEFAULT_DATASET_PATH",
    "Sample",
    "DatasetLoader",
    "DatasetMetadata",
    "ValidationResult",
    "get_dataset_loader",
]
