"""Marketo REST API access."""

from formrelay.marketo.client import MarketoClient

__all__ = ["MarketoClient"]
