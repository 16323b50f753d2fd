import logging
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Union

class TempWorkspace:
    """Job-scoped temp directory plus any extra files the job creates.

    Use as a context manager; everything tracked is removed on exit
    whether the job succeeded, failed or was cancelled.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._tracked: List[Path] = []
        self.logger = logging.getLogger(__name__)

    @classmethod
    def create(cls, base_dir: Optional[Path] = None, prefix: str = "mbc_") -> "TempWorkspace":
        if base_dir is not None:
            Path(base_dir).mkdir(parents=True, exist_ok=True)
        directory = tempfile.mkdtemp(prefix=prefix, dir=str(base_dir) if base_dir else None)
        workspace = cls(Path(directory))
        workspace.logger.debug(f"WORKSPACE_CREATE: {directory}")
        return workspace

    def track(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        if path not in self._tracked:
            self._tracked.append(path)
        return path

    def new_path(self, name: str) -> Path:
        """Tracked path inside the workspace directory (file is not created)."""
        return self.track(self.directory / name)

    @property
    def tracked(self) -> List[Path]:
        return list(self._tracked)

    def dispose_all(self) -> int:
        """Removes tracked files and the directory. Returns the number of files removed."""
        removed = 0
        for path in self._tracked:
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink()
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                self.logger.warning(f"Could not remove temp file {path}: {e}")
        self._tracked.clear()

        try:
            shutil.rmtree(self.directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove temp directory {self.directory}: {e}")

        self.logger.debug(f"WORKSPACE_DISPOSE: {self.directory} removed={removed}")
        return removed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose_all()
