import asyncio
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from market_watcher.utils.logger import LOGGER as logger


class RecipientRepository:
    """
    Line-delimited file of subscribed chat ids, one integer per line.
    Loaded once at startup and written once at shutdown.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        logger.info(f"RecipientRepository initialized at '{self.path}'.")

    def _read(self) -> list[int]:
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            logger.info(f"No recipient file at '{self.path}'; starting with no subscribers.")
            return []

        recipients: list[int] = []
        for line_number, line in enumerate(lines, start=1):
            value = line.strip()
            if not value:
                continue
            try:
                recipient_id = int(value)
            except ValueError:
                logger.warning(f"Skipping unparseable recipient id {value!r} on line {line_number} of '{self.path}'.")
                continue
            if recipient_id not in recipients:
                recipients.append(recipient_id)
        return recipients

    def _write(self, recipients: list[int]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.writelines(f"{recipient_id}\n" for recipient_id in recipients)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    async def load_recipients(self) -> list[int]:
        """
        Returns the persisted ids in file order. A missing file yields an empty list.

        Raises:
            RuntimeError: if the file exists but cannot be read or decoded.
        """
        try:
            recipients = await asyncio.to_thread(self._read)
        except (OSError, UnicodeDecodeError) as e:
            logger.opt(exception=True).error(f"Failed to read recipients from '{self.path}': {e}")
            raise RuntimeError(f"Failed to read recipients from '{self.path}'") from e
        logger.info(f"Loaded {len(recipients)} recipients from '{self.path}'.")
        return recipients

    async def save_recipients(self, recipients: Iterable[int]) -> None:
        """
        Atomically replaces the file with the given ids.

        Raises:
            RuntimeError: if the file cannot be written.
        """
        recipient_list = list(recipients)
        try:
            await asyncio.to_thread(self._write, recipient_list)
        except OSError as e:
            logger.opt(exception=True).error(f"Failed to save recipients to '{self.path}': {e}")
            raise RuntimeError(f"Failed to save recipients to '{self.path}'") from e
        logger.info(f"Saved {len(recipient_list)} recipients to '{self.path}'.")
