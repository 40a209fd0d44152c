MAJOR_VERSION = 1
MINOR_VERSION = 0
PATCH_VERSION = 0

__version__ = f"{MAJOR_VERSION}.{MINOR_VERSION}.{PATCH_VERSION}"
