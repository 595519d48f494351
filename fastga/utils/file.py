#!/usr/bin/env python3
"""
File system utilities for the FastGA pipeline.
Provides safe file operations and collision-proof work directories.
"""
import os
import shutil
import logging
import tempfile
from contextlib import contextmanager
from typing import Optional, Generator, BinaryIO, TextIO, Union

from fastga.exceptions import FileOperationError, ValidationError

logger = logging.getLogger("fastga.utils.file")


def ensure_dir(directory: str) -> bool:
    """Ensure a directory exists, creating it if necessary

    Args:
        directory: Directory path

    Returns:
        True if successful

    Raises:
        FileOperationError: If directory cannot be created
    """
    try:
        if not os.path.exists(directory):
            logger.debug(f"Creating directory: {directory}")
            os.makedirs(directory, exist_ok=True)
        return True
    except OSError as e:
        error_msg = f"Error creating directory {directory}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, path=directory, cause=e) from e


def make_work_dir(parent: Optional[str] = None, prefix: str = "fastga_") -> str:
    """Create a fresh, uniquely named work directory

    The name comes from the atomic create-exclusive primitive behind
    tempfile.mkdtemp, so concurrent invocations in one process never collide.

    Args:
        parent: Parent directory, system temp dir when None
        prefix: Directory name prefix

    Returns:
        Absolute path to the new directory
    """
    try:
        if parent:
            ensure_dir(parent)
        work_dir = tempfile.mkdtemp(prefix=prefix, dir=parent)
        logger.debug(f"Created work directory: {work_dir}")
        return os.path.abspath(work_dir)
    except OSError as e:
        error_msg = f"Error creating work directory under {parent or tempfile.gettempdir()}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, path=parent, cause=e) from e


def remove_dir(directory: str) -> bool:
    """Remove a directory tree, logging rather than raising on failure

    Returns:
        True if the directory no longer exists
    """
    if not directory or not os.path.exists(directory):
        return True
    try:
        shutil.rmtree(directory)
        logger.debug(f"Removed directory: {directory}")
        return True
    except OSError as e:
        logger.warning(f"Error removing directory {directory}: {str(e)}")
        return False


def link_or_copy(source: str, destination: str) -> str:
    """Symlink source to destination, copying when links are unsupported

    Returns:
        The destination path

    Raises:
        FileOperationError: If neither linking nor copying succeeds
    """
    source = os.path.abspath(source)
    try:
        os.symlink(source, destination)
        logger.debug(f"Linked {destination} -> {source}")
    except OSError:
        try:
            shutil.copy2(source, destination)
            logger.debug(f"Copied file: {source} -> {destination}")
        except OSError as e:
            error_msg = f"Error staging {source} into {destination}: {str(e)}"
            logger.error(error_msg)
            raise FileOperationError(error_msg, path=source, cause=e) from e
    return destination


def sequence_suffix(path: str) -> str:
    """File suffix of a sequence file, keeping a trailing .gz

    >>> sequence_suffix("genome.fa.gz")
    '.fa.gz'
    """
    base = os.path.basename(path)
    root, ext = os.path.splitext(base)
    if ext == '.gz':
        inner = os.path.splitext(root)[1]
        return inner + ext
    return ext


@contextmanager
def atomic_write(file_path: str, mode: str = 'w',
                 encoding: Optional[str] = None) -> Generator[Union[TextIO, BinaryIO], None, None]:
    """Write to a file atomically using a temporary file

    Writes to a temporary file first, then renames it to the target file
    to ensure the operation is atomic and prevent partial writes.

    Args:
        file_path: Path to the file
        mode: File open mode (must be a write mode)
        encoding: File encoding

    Yields:
        Open temporary file object

    Raises:
        FileOperationError: If file operation fails
        ValueError: If mode is not a write mode
    """
    if 'w' not in mode and 'a' not in mode and '+' not in mode:
        error_msg = f"Invalid mode for atomic_write: {mode} (must be write mode)"
        logger.error(error_msg)
        raise ValueError(error_msg)

    base_dir = os.path.dirname(file_path) or '.'

    try:
        ensure_dir(base_dir)

        temp_suffix = f".{os.path.basename(file_path)}.tmp"
        with tempfile.NamedTemporaryFile(mode='wb', suffix=temp_suffix,
                                         dir=base_dir, delete=False) as temp_file:
            temp_path = temp_file.name

        if 'b' in mode:
            final_file = open(temp_path, mode)
        else:
            final_file = open(temp_path, mode, encoding=encoding or 'utf-8')

        try:
            yield final_file
            final_file.close()
            shutil.move(temp_path, file_path)
            logger.debug(f"Atomically wrote to file: {file_path}")
        except BaseException:
            if not final_file.closed:
                final_file.close()
            if os.path.exists(temp_path):
                os.unlink(temp_path)
                logger.debug(f"Deleted temporary file: {temp_path} after error")
            raise

    except OSError as e:
        error_msg = f"Error during atomic write to {file_path}: {str(e)}"
        logger.error(error_msg)
        raise FileOperationError(error_msg, path=file_path, cause=e) from e


def check_input_file(file_path: str, label: str = "input") -> str:
    """Absolute path of an existing, readable, non-empty regular file

    Raises:
        ValidationError: If the file is missing, unreadable or empty
    """
    if not file_path:
        raise ValidationError(f"No {label} file given")
    path = os.path.abspath(file_path)
    if not os.path.isfile(path):
        raise ValidationError(f"{label.capitalize()} file not found: {file_path}", {'path': path})
    if not os.access(path, os.R_OK):
        raise ValidationError(f"{label.capitalize()} file is not readable: {file_path}", {'path': path})
    if os.path.getsize(path) == 0:
        raise ValidationError(f"{label.capitalize()} file is empty: {file_path}", {'path': path})
    return path
