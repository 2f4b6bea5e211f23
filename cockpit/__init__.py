"""Cockpit - passive work-context capture and activity nudges."""

__version__ = "0.1.0"
