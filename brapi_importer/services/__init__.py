"""Services for the BrAPI importer."""
