"""gpsmeter - GPS trip tracker with live speed, distance and auto-pause."""

__version__ = "0.4.0"
