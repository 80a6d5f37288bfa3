"""File system calls for one process: descriptors, paths and argument checks."""

from __future__ import annotations

import errno
from enum import IntFlag

from .file import FileTable, FileType, OpenFile
from .fs import FileSystem, FileSystemError, Inode
from .layout import DIRENT_SIZE, MAXPATH, NDEV, NOFILE, Dirent, InodeType, Stat


class OpenMode(IntFlag):
    RDONLY = 0x000
    WRONLY = 0x001
    RDWR = 0x002
    CREATE = 0x200
    TRUNC = 0x400


class SyscallError(OSError):
    """A system call failed."""


class Session:
    """One process's view of the file system: its descriptors and current directory."""

    def __init__(
        self,
        fs: FileSystem,
        files: FileTable | None = None,
        cwd: Inode | None = None,
    ) -> None:
        self.fs = fs
        self.files = files if files is not None else FileTable(fs)
        if cwd is None:
            with fs.log.transaction():
                cwd = fs.namei("/")
            if cwd is None:
                raise SyscallError(errno.ENOENT, "no root directory")
        self.cwd = cwd
        self.ofile: list[OpenFile | None] = [None] * NOFILE

    # Helpers.

    def _argfd(self, fd: int) -> OpenFile:
        if not 0 <= fd < NOFILE or self.ofile[fd] is None:
            raise SyscallError(errno.EBADF, f"bad file descriptor {fd}")
        return self.ofile[fd]

    def _fdalloc(self, f: OpenFile) -> int:
        for fd, slot in enumerate(self.ofile):
            if slot is None:
                self.ofile[fd] = f
                return fd
        raise SyscallError(errno.EMFILE, "too many open files")

    @staticmethod
    def _argpath(path: str) -> str:
        if len(path.encode("utf-8")) >= MAXPATH:
            raise SyscallError(errno.ENAMETOOLONG, "path too long")
        return path

    def _isdirempty(self, dp: Inode) -> bool:
        for off in range(2 * DIRENT_SIZE, dp.size, DIRENT_SIZE):
            raw = self.fs.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FileSystemError("isdirempty: readi")
            if Dirent.from_bytes(raw).inum != 0:
                return False
        return True

    def _create(self, path: str, itype: int, major: int, minor: int) -> Inode:
        """Create path, or for a plain file reuse an existing one; returns it locked."""
        fs = self.fs
        parent = fs.nameiparent(path, self.cwd)
        if parent is None:
            raise SyscallError(errno.ENOENT, f"{path}: no parent directory")
        dp, name = parent
        fs.ilock(dp)

        found = fs.dirlookup(dp, name)
        if found is not None:
            ip = found[0]
            fs.iunlockput(dp)
            fs.ilock(ip)
            if itype == InodeType.FILE and ip.type in (InodeType.FILE, InodeType.DEVICE):
                return ip
            fs.iunlockput(ip)
            raise SyscallError(errno.EEXIST, f"{path}: exists")

        try:
            ip = fs.ialloc(itype)
        except FileSystemError as exc:
            fs.iunlockput(dp)
            raise SyscallError(errno.ENOSPC, "no free inodes") from exc

        fs.ilock(ip)
        ip.major = major
        ip.minor = minor
        ip.nlink = 1
        fs.iupdate(ip)

        try:
            if itype == InodeType.DIR:
                # No nlink for ".": that would be a cyclic reference.
                fs.dirlink(ip, ".", ip.inum)
                fs.dirlink(ip, "..", dp.inum)
            fs.dirlink(dp, name, ip.inum)
        except FileSystemError as exc:
            ip.nlink = 0
            fs.iupdate(ip)
            fs.iunlockput(ip)
            fs.iunlockput(dp)
            raise SyscallError(errno.ENOSPC, f"{path}: cannot create") from exc

        if itype == InodeType.DIR:
            dp.nlink += 1  # for ".."
            fs.iupdate(dp)
        fs.iunlockput(dp)
        return ip

    # Descriptor calls.

    def dup(self, fd: int) -> int:
        f = self._argfd(fd)
        newfd = self._fdalloc(f)
        self.files.dup(f)
        return newfd

    def read(self, fd: int, n: int) -> bytes:
        return self.files.read(self._argfd(fd), n)

    def write(self, fd: int, data: bytes) -> int:
        return self.files.write(self._argfd(fd), data)

    def close(self, fd: int) -> None:
        f = self._argfd(fd)
        self.ofile[fd] = None
        self.files.close(f)

    def fstat(self, fd: int) -> Stat:
        return self.files.stat(self._argfd(fd))

    # Path calls.

    def link(self, old: str, new: str) -> None:
        """Make new another name for the file old."""
        self._argpath(old)
        self._argpath(new)
        fs = self.fs
        with fs.log.transaction():
            ip = fs.namei(old, self.cwd)
            if ip is None:
                raise SyscallError(errno.ENOENT, f"{old}: not found")
            fs.ilock(ip)
            if ip.type == InodeType.DIR:
                fs.iunlockput(ip)
                raise SyscallError(errno.EPERM, f"{old}: is a directory")
            ip.nlink += 1
            fs.iupdate(ip)
            fs.iunlock(ip)

            parent = fs.nameiparent(new, self.cwd)
            error: SyscallError | None = None
            if parent is None:
                error = SyscallError(errno.ENOENT, f"{new}: no parent directory")
            else:
                dp, name = parent
                fs.ilock(dp)
                try:
                    fs.dirlink(dp, name, ip.inum)
                except FileSystemError as exc:
                    error = SyscallError(errno.EEXIST, f"{new}: cannot link")
                    error.__cause__ = exc
                fs.iunlockput(dp)

            if error is None:
                fs.iput(ip)
                return
            fs.ilock(ip)
            ip.nlink -= 1
            fs.iupdate(ip)
            fs.iunlockput(ip)
        raise error

    def unlink(self, path: str) -> None:
        """Remove the directory entry path; directories must be empty."""
        self._argpath(path)
        fs = self.fs
        with fs.log.transaction():
            parent = fs.nameiparent(path, self.cwd)
            if parent is None:
                raise SyscallError(errno.ENOENT, f"{path}: not found")
            dp, name = parent
            fs.ilock(dp)

            if name in (".", ".."):
                fs.iunlockput(dp)
                raise SyscallError(errno.EINVAL, f"cannot unlink {name!r}")
            found = fs.dirlookup(dp, name)
            if found is None:
                fs.iunlockput(dp)
                raise SyscallError(errno.ENOENT, f"{path}: not found")
            ip, off = found
            fs.ilock(ip)

            if ip.nlink < 1:
                raise FileSystemError("unlink: nlink < 1")
            if ip.type == InodeType.DIR and not self._isdirempty(ip):
                fs.iunlockput(ip)
                fs.iunlockput(dp)
                raise SyscallError(errno.ENOTEMPTY, f"{path}: directory not empty")

            if fs.writei(dp, off, Dirent().to_bytes()) != DIRENT_SIZE:
                raise FileSystemError("unlink: writei")
            if ip.type == InodeType.DIR:
                dp.nlink -= 1
                fs.iupdate(dp)
            fs.iunlockput(dp)

            ip.nlink -= 1
            fs.iupdate(ip)
            fs.iunlockput(ip)

    def open(self, path: str, omode: int) -> int:
        """Open path and return a new descriptor."""
        self._argpath(path)
        omode = OpenMode(omode)
        fs = self.fs
        with fs.log.transaction():
            if omode & OpenMode.CREATE:
                ip = self._create(path, InodeType.FILE, 0, 0)
            else:
                ip = fs.namei(path, self.cwd)
                if ip is None:
                    raise SyscallError(errno.ENOENT, f"{path}: not found")
                fs.ilock(ip)
                if ip.type == InodeType.DIR and omode != OpenMode.RDONLY:
                    fs.iunlockput(ip)
                    raise SyscallError(errno.EISDIR, f"{path}: is a directory")

            if ip.type == InodeType.DEVICE and not 0 <= ip.major < NDEV:
                fs.iunlockput(ip)
                raise SyscallError(errno.ENXIO, f"{path}: bad device")

            try:
                f = self.files.alloc()
            except OSError:
                fs.iunlockput(ip)
                raise
            try:
                fd = self._fdalloc(f)
            except SyscallError:
                self.files.close(f)
                fs.iunlockput(ip)
                raise

            if ip.type == InodeType.DEVICE:
                f.type = FileType.DEVICE
                f.major = ip.major
            else:
                f.type = FileType.INODE
                f.off = 0
            f.ip = ip
            f.readable = not omode & OpenMode.WRONLY
            f.writable = bool(omode & (OpenMode.WRONLY | OpenMode.RDWR))

            if omode & OpenMode.TRUNC and ip.type == InodeType.FILE:
                fs.itrunc(ip)
            fs.iunlock(ip)
        return fd

    def mkdir(self, path: str) -> None:
        self._argpath(path)
        with self.fs.log.transaction():
            ip = self._create(path, InodeType.DIR, 0, 0)
            self.fs.iunlockput(ip)

    def mknod(self, path: str, major: int, minor: int) -> None:
        self._argpath(path)
        with self.fs.log.transaction():
            ip = self._create(path, InodeType.DEVICE, major, minor)
            self.fs.iunlockput(ip)

    def chdir(self, path: str) -> None:
        self._argpath(path)
        fs = self.fs
        with fs.log.transaction():
            ip = fs.namei(path, self.cwd)
            if ip is None:
                raise SyscallError(errno.ENOENT, f"{path}: not found")
            fs.ilock(ip)
            if ip.type != InodeType.DIR:
                fs.iunlockput(ip)
                raise SyscallError(errno.ENOTDIR, f"{path}: not a directory")
            fs.iunlock(ip)
            fs.iput(self.cwd)
        self.cwd = ip

    def pipe(self) -> tuple[int, int]:
        """Make a pipe; returns descriptors for its read and write ends."""
        rf, wf = self.files.pipe()
        fd0 = -1
        try:
            fd0 = self._fdalloc(rf)
            fd1 = self._fdalloc(wf)
        except SyscallError:
            if fd0 >= 0:
                self.ofile[fd0] = None
            self.files.close(rf)
            self.files.close(wf)
            raise
        return fd0, fd1