"""Shared fixtures for void_imagegen tests."""

import io
import tarfile
from pathlib import Path

import pytest

from void_imagegen.bootstrap.fetch import BootstrapToolchain

SSHD_CONFIG = """\
#Port 22
#PermitRootLogin prohibit-password
#PasswordAuthentication yes
#PermitEmptyPasswords no
KbdInteractiveAuthentication no
UsePAM yes
Subsystem sftp /usr/libexec/sftp-server
"""

SHADOW = """\
root:$6$salt$hash:19000:0:99999:7:::
nobody:!:19000:0:99999:7:::
"""

CORE_SCRIPTS = (
    "01-static-devnodes.sh",
    "02-kmods.sh",
    "02-udev.sh",
    "03-filesystems.sh",
    "04-swap.sh",
    "05-misc.sh",
)


def make_toolchain_archive(
    members: dict[str, bytes] | None = None,
    mode: str = "w:xz",
) -> bytes:
    """Build an in-memory tar archive that looks like xbps-static."""
    if members is None:
        members = {
            "usr/bin/xbps-install.static": b"#!/bin/sh\n",
            "usr/bin/xbps-reconfigure.static": b"#!/bin/sh\n",
            "var/db/xbps/keys/60:ae:0c:d6:f0:95:17:80:bc:93:46:7a:89:af:a3:2d.plist": (
                b"<plist/>\n"
            ),
        }
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def toolchain_archive():
    """Factory for in-memory toolchain archives."""
    return make_toolchain_archive


@pytest.fixture
def toolchain(tmp_path: Path) -> BootstrapToolchain:
    """An extracted static toolchain with one trust key."""
    root = tmp_path / "workspace"
    for rel in ("usr/bin/xbps-install.static", "usr/bin/xbps-reconfigure.static"):
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n")
        path.chmod(0o755)
    keys = root / "var/db/xbps/keys"
    keys.mkdir(parents=True)
    (keys / "void.plist").write_text("<plist/>\n")
    return BootstrapToolchain(root=root, checksum="0" * 64)


def populate_rootfs(root: Path) -> Path:
    """Lay out the files a base install leaves behind."""
    (root / "etc/ssh").mkdir(parents=True, exist_ok=True)
    (root / "etc/ssh/sshd_config").write_text(SSHD_CONFIG)
    (root / "etc/shadow").write_text(SHADOW)

    for name in ["sshd", *(f"agetty-tty{n}" for n in range(1, 7))]:
        (root / "etc/sv" / name).mkdir(parents=True, exist_ok=True)
        (root / "etc/sv" / name / "run").write_text("#!/bin/sh\n")

    runsvdir = root / "etc/runit/runsvdir/default"
    runsvdir.mkdir(parents=True, exist_ok=True)
    for n in range(1, 7):
        (runsvdir / f"agetty-tty{n}").symlink_to(f"/etc/sv/agetty-tty{n}")

    core = root / "etc/runit/core-services"
    core.mkdir(parents=True, exist_ok=True)
    for name in CORE_SCRIPTS:
        (core / name).write_text(f"# {name}\nmsg 'running {name}'\n")

    for sub in ("proc", "sys", "dev", "run", "tmp", "var/cache/xbps"):
        (root / sub).mkdir(parents=True, exist_ok=True)
    return root


@pytest.fixture
def rootfs_factory():
    """Factory laying out a synthetic installed tree under a directory."""
    return populate_rootfs


@pytest.fixture
def rootfs(tmp_path: Path) -> Path:
    """A synthetic installed target root."""
    return populate_rootfs(tmp_path / "rootfs")


@pytest.fixture
def empty_mounts(tmp_path: Path) -> Path:
    """A mount table with nothing under the test directories."""
    mounts = tmp_path / "mounts"
    mounts.write_text(
        "sysfs /sys sysfs rw,nosuid,nodev,noexec,relatime 0 0\n"
        "proc /proc proc rw,nosuid,nodev,noexec,relatime 0 0\n"
    )
    return mounts
