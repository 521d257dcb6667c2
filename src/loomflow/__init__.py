"""Loomflow: a workflow orchestration engine for actor systems."""

__version__ = "0.1.0"
