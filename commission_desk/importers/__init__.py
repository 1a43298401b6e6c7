"""Importers for commission configuration files."""
