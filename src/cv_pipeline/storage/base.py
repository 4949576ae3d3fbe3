from abc import ABC, abstractmethod
from pathlib import Path


class FileStorage(ABC):
    """Byte storage for uploaded CVs, addressed by the stored (unique) file name."""

    @abstractmethod
    async def save(self, content: bytes, stored_filename: str, subdir: str = "") -> str:
        """Persist bytes and return the storage location relative to the backend root."""
        ...

    @abstractmethod
    async def retrieve(self, file_path: str) -> Path:
        """Return a local path to the stored file for download or re-extraction."""
        ...

    @abstractmethod
    async def read(self, file_path: str) -> bytes:
        ...

    @abstractmethod
    async def delete(self, file_path: str) -> None:
        ...
