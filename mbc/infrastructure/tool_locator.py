import logging
import shutil
from pathlib import Path
from typing import Optional
from mbc.config.models import ToolsConfig

class ToolLocator:
    """Resolves the ffmpeg/ffprobe binaries once per run.

    An explicitly configured path wins; otherwise the binary is looked up
    on PATH. A tool that cannot be found resolves to None and the caller
    decides which error to raise.
    """

    def __init__(self, config: Optional[ToolsConfig] = None):
        self.config = config or ToolsConfig()
        self.logger = logging.getLogger(__name__)
        self._ffmpeg: Optional[str] = None
        self._ffprobe: Optional[str] = None
        self._resolved = False

    def _find(self, name: str, configured: Optional[Path]) -> Optional[str]:
        if configured is not None:
            if Path(configured).exists():
                self.logger.info(f"Using configured {name}: {configured}")
                return str(configured)
            self.logger.warning(f"Configured {name} not found at {configured}, searching PATH")

        found = shutil.which(name)
        if found:
            self.logger.info(f"Found {name} in PATH: {found}")
        else:
            self.logger.error(f"{name} not found in PATH")
        return found

    def resolve(self):
        if not self._resolved:
            self._ffmpeg = self._find("ffmpeg", self.config.ffmpeg_path)
            self._ffprobe = self._find("ffprobe", self.config.ffprobe_path)
            self._resolved = True

    @property
    def ffmpeg(self) -> Optional[str]:
        self.resolve()
        return self._ffmpeg

    @property
    def ffprobe(self) -> Optional[str]:
        self.resolve()
        return self._ffprobe
