"""Team Orchestrator - drives a PO, a tech lead and parallel developer agents through a resumable workflow."""

__version__ = "0.1.0"
