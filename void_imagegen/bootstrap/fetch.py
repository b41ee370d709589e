"""Static xbps toolchain fetch module.

This module handles:
- URL discovery for the statically linked xbps archive on a mirror
- Download with optional checksum verification
- Extraction into the scratch workspace
"""

from __future__ import annotations

import hashlib
import logging
import platform
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

import httpx

from void_imagegen.errors import ImageGenError

logger = logging.getLogger(__name__)

# Timeout for checksum requests (seconds)
CHECKSUM_TIMEOUT = 30

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# platform.machine() values mapped to xbps static archive tags
HOST_ARCH_MAP: dict[str, str] = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv7l": "armv7l",
    "armv6l": "armv6l",
    "i686": "i686",
    "i386": "i686",
}

# Paths inside the extracted archive
XBPS_INSTALL_BIN = Path("usr/bin/xbps-install.static")
XBPS_RECONFIGURE_BIN = Path("usr/bin/xbps-reconfigure.static")
XBPS_KEYS_DIR = Path("var/db/xbps/keys")


class DownloadError(ImageGenError):
    """Raised when the toolchain download fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        super().__init__(message, code=code)


class VerificationError(ImageGenError):
    """Raised when checksum verification fails."""

    def __init__(self, message: str, code: str = "verification_error") -> None:
        super().__init__(message, code=code)


class ExtractionError(ImageGenError):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message, code=code)


@dataclass
class BootstrapURLs:
    """URLs for the static toolchain archive and its checksums."""

    archive_url: str
    sha256sums_url: str

    @property
    def archive_filename(self) -> str:
        """Filename component of the archive URL."""
        return self.archive_url.rsplit("/", 1)[-1]


@dataclass
class BootstrapToolchain:
    """An extracted static xbps toolchain.

    Attributes:
        root: Workspace directory the archive was extracted into.
        checksum: SHA-256 of the downloaded archive.
    """

    root: Path
    checksum: str

    @property
    def xbps_install(self) -> Path:
        """Path to the static xbps-install executable."""
        return self.root / XBPS_INSTALL_BIN

    @property
    def xbps_reconfigure(self) -> Path:
        """Path to the static xbps-reconfigure executable."""
        return self.root / XBPS_RECONFIGURE_BIN

    @property
    def keys_dir(self) -> Path:
        """Repository trust keys bundled with the toolchain."""
        return self.root / XBPS_KEYS_DIR


def host_architecture(machine: str | None = None) -> str:
    """Map the host machine type to an xbps static archive tag.

    Args:
        machine: Machine string; defaults to platform.machine().

    Returns:
        Architecture tag such as 'x86_64' or 'aarch64'.

    Raises:
        DownloadError: If no static toolchain exists for the host.
    """
    machine = machine or platform.machine()
    try:
        return HOST_ARCH_MAP[machine.lower()]
    except KeyError:
        raise DownloadError(
            f"No static xbps toolchain for host architecture '{machine}'",
            code="unsupported_host",
        ) from None


def build_bootstrap_urls(mirror_url: str, host_arch: str) -> BootstrapURLs:
    """Build URLs for the static toolchain archive and checksums.

    Args:
        mirror_url: Mirror base URL (e.g., 'https://repo-default.voidlinux.org').
        host_arch: Host architecture tag from host_architecture().

    Returns:
        BootstrapURLs with archive and checksum URLs.
    """
    base = f"{mirror_url.rstrip('/')}/static"
    return BootstrapURLs(
        archive_url=f"{base}/xbps-static-latest.{host_arch}-musl.tar.xz",
        sha256sums_url=f"{base}/sha256sums.txt",
    )


def parse_sha256sums(content: str, archive_filename: str) -> str | None:
    """Parse a sha256sums file to find the checksum of one file.

    Args:
        content: Content of the checksums file.
        archive_filename: Filename to look up.

    Returns:
        SHA256 checksum string, or None if not found.
    """
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split(maxsplit=1)
        if len(parts) != 2:
            continue

        checksum, filename = parts
        # Remove leading '*' if present (binary mode indicator)
        filename = filename.lstrip("*").strip()

        if filename == archive_filename:
            return checksum.lower()

    return None


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    expected_checksum: str | None = None,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> str:
    """Download a file with optional checksum verification.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        expected_checksum: Expected SHA256 checksum (optional).
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        SHA-256 hex digest of the downloaded file.

    Raises:
        DownloadError: If download fails.
        VerificationError: If checksum verification fails.
    """
    logger.info("Downloading %s", url)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(f"Timeout downloading {url}: {e}", code="timeout") from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e

    computed = sha256.hexdigest()
    if expected_checksum and computed != expected_checksum.lower():
        dest_path.unlink(missing_ok=True)
        raise VerificationError(
            f"Checksum mismatch for {url}: expected {expected_checksum}, got {computed}"
        )

    logger.info("Downloaded %s (%d bytes)", dest_path.name, total_bytes)
    return computed


def fetch_checksums(
    client: httpx.Client,
    sha256sums_url: str,
    timeout: float = CHECKSUM_TIMEOUT,
) -> str:
    """Fetch checksums file content.

    Raises:
        DownloadError: If fetch fails.
    """
    logger.debug("Fetching checksums from %s", sha256sums_url)

    try:
        response = client.get(sha256sums_url, timeout=timeout)
        response.raise_for_status()
        return response.text
    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error fetching checksums: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(
            f"Timeout fetching checksums from {sha256sums_url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error fetching checksums: {e}",
            code="network_error",
        ) from e


def extract_archive(archive_path: Path, dest_dir: Path) -> None:
    """Extract the toolchain archive, overwriting existing files.

    Raises:
        ExtractionError: If extraction fails or a member escapes dest_dir.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(archive_path, "r:*") as tar:
            members = tar.getmembers()
            if not members:
                raise ExtractionError(
                    f"Archive {archive_path} is empty",
                    code="empty_archive",
                )
            for member in members:
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ExtractionError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )
                # Stale files from an earlier run are replaced, not merged
                stale = dest_dir / member_path
                if member.isfile() and (stale.is_symlink() or stale.is_file()):
                    stale.unlink()
            tar.extractall(dest_dir, filter="data")
    except tarfile.TarError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e


def fetch_bootstrap(
    client: httpx.Client,
    mirror_url: str,
    workspace: Path,
    host_arch: str | None = None,
    verify_checksum: bool = True,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> BootstrapToolchain:
    """Download and extract the static xbps toolchain.

    The workspace is created if absent. Extraction always overwrites what a
    previous partial run left behind.

    Args:
        client: HTTPX client instance.
        mirror_url: Mirror base URL.
        workspace: Scratch workspace directory.
        host_arch: Host architecture tag; detected when not given.
        verify_checksum: Whether to verify against sha256sums.txt.
        timeout: Download timeout in seconds.

    Returns:
        BootstrapToolchain rooted at the workspace.

    Raises:
        DownloadError: If download fails.
        VerificationError: If checksum verification fails.
        ExtractionError: If extraction fails or the executables are missing.
    """
    host_arch = host_arch or host_architecture()
    urls = build_bootstrap_urls(mirror_url, host_arch)

    workspace.mkdir(parents=True, exist_ok=True)

    expected_checksum: str | None = None
    if verify_checksum:
        checksums_content = fetch_checksums(client, urls.sha256sums_url)
        expected_checksum = parse_sha256sums(checksums_content, urls.archive_filename)
        if not expected_checksum:
            logger.warning(
                "Could not find checksum for %s in sha256sums.txt",
                urls.archive_filename,
            )

    # The download lives beside, not inside, the extracted tree
    with tempfile.TemporaryDirectory(dir=workspace.parent, prefix=".xbps-static-") as tmp:
        archive_path = Path(tmp) / urls.archive_filename
        checksum = download_file(
            client,
            urls.archive_url,
            archive_path,
            expected_checksum=expected_checksum,
            timeout=timeout,
        )
        extract_archive(archive_path, workspace)

    toolchain = BootstrapToolchain(root=workspace, checksum=checksum)
    for binary in (toolchain.xbps_install, toolchain.xbps_reconfigure):
        if not binary.is_file():
            raise ExtractionError(
                f"Toolchain archive did not provide {binary.relative_to(workspace)}",
                code="missing_binary",
            )

    logger.info("Static xbps toolchain ready in %s", workspace)
    return toolchain


__all__ = [
    "BootstrapToolchain",
    "BootstrapURLs",
    "DownloadError",
    "ExtractionError",
    "VerificationError",
    "build_bootstrap_urls",
    "download_file",
    "extract_archive",
    "fetch_bootstrap",
    "fetch_checksums",
    "host_architecture",
    "parse_sha256sums",
]
