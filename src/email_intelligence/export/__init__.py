"""Export, dated backups and JSON dumps of stored records."""

__all__ = ["export_manager"]
