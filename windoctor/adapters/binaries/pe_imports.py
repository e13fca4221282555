"""PE import-table reader.

Implements ImportTablePort with pefile. Only the import (and optionally
delay-load import) directories are parsed; nothing is loaded or executed.
"""

import logging

import pefile

from windoctor.core.exceptions import BinaryUnreadable, MalformedImportTable
from windoctor.core.ports import ImportTablePort

logger = logging.getLogger(__name__)

_IMPORT = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_IMPORT"]
_DELAY_IMPORT = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT"]


def _decode(name: bytes | str | None) -> str:
    if name is None:
        return ""
    if isinstance(name, bytes):
        return name.decode("ascii", errors="replace")
    return name


class PefileImportReader(ImportTablePort):
    """Reads declared imports from PE executables and libraries."""

    def __init__(self, include_delay_load: bool = False):
        """Initialize the reader.

        Args:
            include_delay_load: Also report modules from the delay-load
                import directory.
        """
        self.include_delay_load = include_delay_load

    def read_imports(self, path: str) -> list[str]:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise BinaryUnreadable(path, e.strerror or str(e)) from e

        try:
            pe = pefile.PE(data=data, fast_load=True)
        except pefile.PEFormatError as e:
            raise MalformedImportTable(path, str(e)) from e

        try:
            directories = [_IMPORT]
            if self.include_delay_load:
                directories.append(_DELAY_IMPORT)
            try:
                pe.parse_data_directories(directories=directories)
            except pefile.PEFormatError as e:
                raise MalformedImportTable(path, str(e)) from e

            names = [_decode(entry.dll) for entry in getattr(pe, "DIRECTORY_ENTRY_IMPORT", [])]
            if self.include_delay_load:
                names.extend(
                    _decode(entry.dll)
                    for entry in getattr(pe, "DIRECTORY_ENTRY_DELAY_IMPORT", [])
                )
        finally:
            pe.close()

        logger.debug(f"{path}: {len(names)} declared import(s)")
        return [name for name in names if name]
