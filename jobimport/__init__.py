"""Job feed importer: fetch XML job feeds and reconcile them into a job store."""

__version__ = "0.1.0"
