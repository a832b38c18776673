"""Install media download."""

import logging
import os
from typing import Callable, Optional

import requests

from .config_manager import LabConfig
from .disk_manager import ConfirmFn, deny
from .errors import DownloadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

ProgressFn = Callable[[int, Optional[int]], None]


class MediaDownloader:
    """Fetches the installer ISO into the iso directory."""

    def __init__(self,
                 config: LabConfig,
                 confirm: ConfirmFn = deny,
                 session: Optional[requests.Session] = None):
        self.config = config
        self.confirm = confirm
        self.session = session or requests.Session()

    def media_present(self) -> bool:
        return os.path.isfile(self.config.iso_file)

    def download(self, progress: Optional[ProgressFn] = None) -> bool:
        """
        Download the install media.

        An existing file is only replaced after confirmation. Data is written
        to ``<iso>.part`` and renamed once complete.

        Args:
            progress: Called with (bytes_done, total_bytes_or_None) per chunk

        Returns:
            True if a new file was downloaded, False if the existing one was kept

        Raises:
            DownloadError: HTTP or connection failure
        """
        target = self.config.iso_file
        partial = f"{target}.part"
        os.makedirs(self.config.iso_dir, exist_ok=True)

        if os.path.isfile(target):
            if not self.confirm("Install media already present. Download it again?"):
                return False

        url = self.config.iso_url
        logger.info(f"Downloading {url} to {target}", extra={'path': target})

        try:
            with self.session.get(url, stream=True, allow_redirects=True,
                                  timeout=self.config.download_timeout) as response:
                response.raise_for_status()
                total = response.headers.get('Content-Length')
                total = int(total) if total and total.isdigit() else None

                done = 0
                with open(partial, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        done += len(chunk)
                        if progress:
                            progress(done, total)
        except requests.RequestException as e:
            self._discard(partial)
            logger.error(f"Download failed: {e}")
            raise DownloadError(f"Download failed: {e}") from e
        except OSError as e:
            self._discard(partial)
            logger.error(f"Could not write {partial}: {e}")
            raise DownloadError(f"Could not write {partial}: {e}") from e

        if done == 0:
            self._discard(partial)
            raise DownloadError(f"Download failed: empty response from {url}")

        if total is not None and done != total:
            self._discard(partial)
            raise DownloadError(f"Download incomplete: got {done} of {total} bytes")

        os.replace(partial, target)
        logger.info(f"Download complete ({done} bytes)", extra={'path': target})
        return True

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
