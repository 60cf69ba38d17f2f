from .importer import TrackImportError, build_track, import_track

__all__ = ["TrackImportError", "build_track", "import_track"]
