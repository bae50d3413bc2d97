# ========================
# npiscore/pipeline/download.py
# ========================

"""
Source Downloader

Streams the public provider-and-service extract to local disk.
"""

import csv
import time
import logging
from pathlib import Path
from typing import Dict, Any, List

import requests

from .ingestion import parse_line

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def format_bytes(num_bytes: float) -> str:
    for unit, size in (('GB', 1e9), ('MB', 1e6), ('KB', 1e3)):
        if num_bytes >= size:
            return f"{num_bytes / size:.1f} {unit}"
    return f"{int(num_bytes)} B"


class SourceDownloader:
    """
    Downloads the raw CSV with progress reporting.
    """

    def __init__(self, url: str, output_file: str,
                 progress_bytes: int = 50 * 1024 * 1024,
                 timeout: int = 120,
                 session=None):
        """
        Args:
            url (str): Download URL
            output_file (str): Destination path
            progress_bytes (int): Log progress every N bytes
            timeout (int): Connect/read timeout in seconds
            session: Optional requests session
        """
        self.url = url
        self.output_file = Path(output_file)
        self.progress_bytes = progress_bytes
        self.timeout = timeout
        self.session = session or requests.Session()

    def download(self, overwrite: bool = False) -> Dict[str, Any]:
        """
        Fetch the file unless it is already present.

        Args:
            overwrite (bool): Download even if the output file exists

        Returns:
            dict: Path, size, elapsed seconds and whether a download happened
        """
        if self.output_file.exists() and not overwrite:
            size = self.output_file.stat().st_size
            logger.info(f"Source file already exists: {self.output_file} ({format_bytes(size)})")
            return {'path': str(self.output_file), 'bytes': size, 'downloaded': False, 'seconds': 0.0}

        self.output_file.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Downloading {self.url}")
        start = time.time()
        written = 0

        try:
            with self.session.get(self.url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                total = int(resp.headers.get('Content-Length') or 0)
                next_report = self.progress_bytes
                with open(self.output_file, 'wb') as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        written += len(chunk)
                        if written >= next_report:
                            pct = f" ({written / total * 100:.1f}%)" if total else ""
                            logger.info(f"Downloaded {format_bytes(written)}{pct}")
                            next_report += self.progress_bytes
        except (requests.RequestException, OSError):
            if self.output_file.exists():
                self.output_file.unlink()
            logger.error(f"Download failed; removed partial file {self.output_file}")
            raise

        elapsed = time.time() - start
        logger.info(f"Download complete: {format_bytes(written)} in {elapsed:.0f}s")
        self._preview_header()
        return {'path': str(self.output_file), 'bytes': written, 'downloaded': True, 'seconds': elapsed}

    def _preview_header(self) -> List[str]:
        with open(self.output_file, 'r', encoding='utf-8-sig', errors='replace') as f:
            header = f.readline().rstrip('\r\n')
        try:
            columns = parse_line(header)
        except csv.Error as e:
            logger.warning(f"Downloaded header is not valid CSV: {e}")
            return []
        print(f"Header ({len(columns)} columns): {', '.join(columns[:12])}"
              f"{' ...' if len(columns) > 12 else ''}")
        return columns
