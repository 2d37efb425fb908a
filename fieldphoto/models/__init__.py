from fieldphoto.models.photo_entry import PhotoEntry
from fieldphoto.models.photo_snapshot import PhotoSnapshot
from fieldphoto.models.project import Project

__all__ = ["PhotoEntry", "PhotoSnapshot", "Project"]
