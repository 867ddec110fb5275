from .client import ResidentDirectoryClient, ResidentProfile, resident_directory

__all__ = ["ResidentDirectoryClient", "ResidentProfile", "resident_directory"]
