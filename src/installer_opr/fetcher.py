"""Package download and extraction.

Fetches a section's zip archive into its workspace, unpacks it in place
and removes the archive. http(s) URLs are streamed with requests;
file:// URLs are copied from the local filesystem (local mirrors, tests).
There are no retries: a failed fetch halts the run.
"""

import logging
import shutil
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import requests

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_TIMEOUT = 300


class FetchError(Exception):
    """Package could not be downloaded or extracted.

    Attributes:
        operation: 'download' or 'extract'
        url: Package URL
    """

    def __init__(self, message: str, operation: str = 'download', url: str = ''):
        super().__init__(message)
        self.operation = operation
        self.url = url


def archive_name_from_url(url: str) -> str:
    """Derive the local archive filename from the last URL path component.

    Raises:
        FetchError: If the URL path has no final component
    """
    path = unquote(urlparse(url).path)
    name = PurePosixPath(path).name if not path.endswith('/') else ''
    if not name or name in ('.', '..'):
        raise FetchError(f"Cannot derive archive filename from URL: {url}", url=url)
    return name


class PackageFetcher:
    """Downloads and unpacks section packages.

    Attributes:
        timeout: Seconds to wait for the server (connect and between reads)
    """

    def __init__(self, timeout: Optional[int] = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def download(self, url: str, target: Path) -> Path:
        """Download url to the file target.

        Raises:
            FetchError: On network errors, non-2xx responses or local I/O errors
        """
        target = Path(target)
        scheme = urlparse(url).scheme

        if scheme == 'file':
            return self._copy_local(url, target)
        if scheme not in ('http', 'https'):
            raise FetchError(f"Unsupported URL scheme '{scheme}': {url}", url=url)

        logger.info(f"Downloading {url}...")
        try:
            with requests.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                with open(target, 'wb') as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except requests.exceptions.HTTPError as e:
            raise FetchError(f"Download of {url} failed: {e}", url=url) from e
        except requests.exceptions.ConnectionError as e:
            raise FetchError(f"Cannot connect to download {url}: {e}", url=url) from e
        except requests.exceptions.Timeout as e:
            raise FetchError(f"Timeout downloading {url}", url=url) from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Error downloading {url}: {e}", url=url) from e
        except OSError as e:
            raise FetchError(f"Cannot write {target}: {e}", url=url) from e

        logger.debug(f"Downloaded {url} to {target} ({target.stat().st_size} bytes)")
        return target

    def _copy_local(self, url: str, target: Path) -> Path:
        source = Path(url2pathname(urlparse(url).path))
        logger.info(f"Copying {source}...")
        try:
            shutil.copyfile(source, target)
        except OSError as e:
            raise FetchError(f"Cannot copy {source}: {e}", url=url) from e
        return target

    def extract(self, archive: Path, destination: Path, url: str = '') -> None:
        """Extract a zip archive into destination.

        Unix permission bits stored in the archive are restored, so
        packaged scripts keep their executable bit.

        Raises:
            FetchError: If the archive is not a valid zip, has corrupt or
                encrypted members, or cannot be written
        """
        logger.debug(f"Extracting {archive.name} into {destination}")
        try:
            with zipfile.ZipFile(archive) as zf:
                for info in zf.infolist():
                    target = Path(zf.extract(info, destination))
                    mode = (info.external_attr >> 16) & 0o777
                    if mode and not info.is_dir():
                        target.chmod(mode)
        except zipfile.BadZipFile as e:
            raise FetchError(f"Cannot extract {archive.name}: {e}",
                             operation='extract', url=url) from e
        except (zlib.error, RuntimeError, NotImplementedError, EOFError, ValueError) as e:
            # corrupt deflate data, encrypted members, unsupported compression
            raise FetchError(f"Corrupt archive {archive.name}: {e}",
                             operation='extract', url=url) from e
        except OSError as e:
            raise FetchError(f"Error extracting {archive.name}: {e}",
                             operation='extract', url=url) from e

    def fetch_and_extract(self, url: str, destination: Path) -> None:
        """Download the archive at url into destination and unpack it there.

        The archive is removed afterwards; failing to remove it is only
        logged.

        Raises:
            FetchError: If the download or extraction fails
        """
        destination = Path(destination)
        archive = destination / archive_name_from_url(url)

        self.download(url, archive)
        self.extract(archive, destination, url=url)

        try:
            archive.unlink()
        except OSError as e:
            logger.warning(f"Error deleting {archive} after extract: {e}")
