"""FMI (F/M) pipeline utilities.

The top-level executables are:

- 01_validation_candidates.py
- 02_sliding_window_validation.py
- 03_stratified_roc.py
- 04_forensic_hindcast.py
- 05_false_negatives.py
- 06_figure_concept.py
"""

__all__ = [
    "config",
    "logging_utils",
    "manifest",
    "runner",
    "dataset",
    "extract",
    "fmi",
    "validation",
    "hindcast",
    "candidates",
    "plotting",
    "artifacts",
]

__version__ = "0.1.0"
