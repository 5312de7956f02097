"""Client-side helpers for submitting files to the relay."""

from formrelay.client.selection import FileSelection, SelectedFile, SelectionError
from formrelay.client.uploader import RelayClient

__all__ = ["FileSelection", "SelectedFile", "SelectionError", "RelayClient"]
