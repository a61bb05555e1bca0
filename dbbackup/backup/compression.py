"""
Gzip compression for backup artifacts.

Every call maps exactly one file to one sibling:
- compress_file:   path     -> path.gz
- decompress_file: path.gz  -> path

The input file is never modified or removed; callers decide on deletion.
"""

import os
import gzip
import shutil
import zlib


CHUNK_SIZE = 1024 * 1024  # 1MB


class CompressionError(OSError):
    """Raised when compression or decompression fails."""
    pass


def compressed_path(path: str) -> str:
    """Return the gzip sibling name for a file."""
    return f"{path}.gz"


def decompressed_path(path: str) -> str:
    """
    Return the uncompressed sibling name for a .gz file.

    Raises:
        CompressionError: If the path does not end in .gz
    """
    if not path.endswith('.gz'):
        raise CompressionError(f"Not a gzip artifact (expected .gz suffix): {path}")
    return path[:-3]


def compress_file(path: str) -> str:
    """
    Stream a file through gzip into `<path>.gz`.

    Args:
        path: File to compress

    Returns:
        Path of the created .gz file

    Raises:
        CompressionError: If the source is missing or the destination is unwritable
    """
    if not os.path.isfile(path):
        raise CompressionError(f"File not found: {path}")

    output_path = compressed_path(path)

    try:
        with open(path, 'rb') as src, gzip.open(output_path, 'wb') as dst:
            shutil.copyfileobj(src, dst, CHUNK_SIZE)
        return output_path
    except Exception as e:
        _remove_partial(output_path)
        raise CompressionError(f"Failed to compress {path}: {e}")


def decompress_file(path: str) -> str:
    """
    Stream a .gz file back into its uncompressed sibling.

    Args:
        path: Path ending in .gz

    Returns:
        Path of the decompressed file

    Raises:
        CompressionError: If the file is missing, not gzip, or corrupt
    """
    output_path = decompressed_path(path)

    if not os.path.isfile(path):
        raise CompressionError(f"File not found: {path}")

    try:
        with gzip.open(path, 'rb') as src, open(output_path, 'wb') as dst:
            shutil.copyfileobj(src, dst, CHUNK_SIZE)
        return output_path
    except (gzip.BadGzipFile, EOFError, zlib.error) as e:
        _remove_partial(output_path)
        raise CompressionError(f"Corrupt or non-gzip input {path}: {e}")
    except Exception as e:
        _remove_partial(output_path)
        raise CompressionError(f"Failed to decompress {path}: {e}")


def get_file_size(path: str) -> int:
    """
    Get the size of an artifact in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(path)
    except FileNotFoundError:
        raise CompressionError(f"Artifact not found: {path}")
    except OSError as e:
        raise CompressionError(f"Failed to get artifact size: {e}")


def _remove_partial(path: str):
    # Clean up partial output on failure
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            pass
