"""Provider implementations."""

from multistore.providers._ftp import FTPProvider
from multistore.providers._local import LocalProvider
from multistore.providers._memory import MemoryProvider
from multistore.providers._object_store import ObjectStoreProvider

__all__ = ["FTPProvider", "LocalProvider", "MemoryProvider", "ObjectStoreProvider"]

try:
    from multistore.providers._s3 import S3Provider

    __all__ = [*__all__, "S3Provider"]
except ImportError:  # pragma: no cover
    pass

try:
    from multistore.providers._gcs import GCSProvider

    __all__ = [*__all__, "GCSProvider"]
except ImportError:  # pragma: no cover
    pass

try:
    from multistore.providers._sftp import HostKeyPolicy, SFTPProvider

    __all__ = [*__all__, "HostKeyPolicy", "SFTPProvider"]
except ImportError:  # pragma: no cover
    pass
