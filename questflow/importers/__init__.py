"""Import/export of QuestFlow record collections."""

from .json_importer import JsonImporter, export_records, parse_records_json

__all__ = ["JsonImporter", "export_records", "parse_records_json"]
