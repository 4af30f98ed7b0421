"""Relay model monitor: watches API-aggregation gateways for model list changes."""

__version__ = "0.1.0"
