"""Content risk control: detectors, a rule engine and an HTTP service for reviewing user text."""

__version__ = "0.1.0"