"""Learning-path plan generation and progress reconciliation."""

__version__ = "0.1.0"
