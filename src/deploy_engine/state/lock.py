"""Advisory lock preventing parallel deployments."""

import os

import structlog

from ..errors import DeployInProgressError

logger = structlog.get_logger()


class DeployLock:
    """Lock file held for the duration of one deployment."""

    def __init__(self, path: str):
        """Initialize lock.

        Args:
            path: Lock file path
        """
        self.path = path
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self):
        """Create the lock file.

        Raises:
            DeployInProgressError: If the lock file already exists
        """
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as e:
            logger.error("lock.held", path=self.path)
            raise DeployInProgressError("A deployment is already in progress") from e

        os.write(fd, str(os.getpid()).encode())
        os.close(fd)
        self._held = True
        logger.debug("lock.acquired", path=self.path)

    def release(self):
        """Remove the lock file if this process created it."""
        if not self._held:
            return
        try:
            os.remove(self.path)
        except FileNotFoundError:
            logger.warning("lock.already_removed", path=self.path)
        self._held = False
        logger.debug("lock.released", path=self.path)

    def __enter__(self) -> "DeployLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
