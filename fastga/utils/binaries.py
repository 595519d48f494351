#!/usr/bin/env python3
"""
Location of the external FastGA executables
"""
import os
import shutil
import logging
from typing import Any, Dict, Optional

from fastga.exceptions import ValidationError

logger = logging.getLogger("fastga.utils.binaries")

BIN_DIR_ENV = "FASTGA_BIN_DIR"

# binary name -> key of its explicit path in the tools section
TOOL_KEYS = {
    'FAtoGDB': 'fatogdb_path',
    'GIXmake': 'gixmake_path',
    'FastGA': 'fastga_path',
}


def _is_executable(path: Optional[str]) -> bool:
    return bool(path) and os.path.isfile(path) and os.access(path, os.X_OK)


def find_binary(name: str, tools_config: Optional[Dict[str, Any]] = None) -> str:
    """Find an external executable

    Search order: explicit path in the tools section, tools.bin_dir,
    the FASTGA_BIN_DIR environment variable, then PATH.

    Args:
        name: Executable name (FAtoGDB, GIXmake or FastGA)
        tools_config: The `tools` configuration section

    Returns:
        Absolute path to the executable

    Raises:
        ValidationError: If the executable cannot be found
    """
    tools_config = tools_config or {}
    searched = []

    explicit = tools_config.get(TOOL_KEYS.get(name, ''), None)
    if explicit and explicit != name:
        # Bare names fall through to the directory and PATH search
        if os.sep in explicit or os.path.isabs(explicit):
            searched.append(explicit)
            if _is_executable(explicit):
                return os.path.abspath(explicit)
            raise ValidationError(f"Configured {name} binary is not executable: {explicit}",
                                  {'binary': name, 'path': explicit})
        name_to_find = explicit
    else:
        name_to_find = name

    for directory in (tools_config.get('bin_dir'), os.environ.get(BIN_DIR_ENV)):
        if directory:
            candidate = os.path.join(directory, name_to_find)
            searched.append(candidate)
            if _is_executable(candidate):
                return os.path.abspath(candidate)

    found = shutil.which(name_to_find)
    if found:
        return os.path.abspath(found)

    logger.error(f"Could not find {name} binary (searched {searched} and PATH)")
    raise ValidationError(f"{name} binary not found; set tools.bin_dir or {BIN_DIR_ENV}",
                          {'binary': name, 'searched': searched})


def find_all_binaries(tools_config: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    """Resolve every executable the pipeline needs"""
    return {name: find_binary(name, tools_config) for name in TOOL_KEYS}
