import asyncio
from pathlib import Path

from cv_pipeline.storage.base import FileStorage


class LocalFileStorage(FileStorage):
    def __init__(self, base_dir: str) -> None:
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, file_path: str) -> Path:
        abs_path = (self.base_dir / file_path).resolve()
        if not abs_path.is_relative_to(self.base_dir):
            raise ValueError(f"Path escapes storage root: {file_path}")
        return abs_path

    async def save(self, content: bytes, stored_filename: str, subdir: str = "") -> str:
        relative = str(Path(subdir) / stored_filename) if subdir else stored_filename
        target = self._resolve(relative)
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, content)
        return relative

    async def retrieve(self, file_path: str) -> Path:
        abs_path = self._resolve(file_path)
        if not await asyncio.to_thread(abs_path.is_file):
            raise FileNotFoundError(f"File not found: {file_path}")
        return abs_path

    async def read(self, file_path: str) -> bytes:
        abs_path = await self.retrieve(file_path)
        return await asyncio.to_thread(abs_path.read_bytes)

    async def delete(self, file_path: str) -> None:
        abs_path = self._resolve(file_path)
        await asyncio.to_thread(abs_path.unlink, missing_ok=True)
