"""Encoding detection for CSV sheets"""

from pathlib import Path

import chardet


def detect_encoding(file_path: Path) -> str:
    """
    Detect file encoding with fallback support

    Spreadsheet exports from Japanese locales are often cp932, so that is
    tried before the latin codecs.

    Args:
        file_path: Path to file

    Returns:
        Detected encoding string
    """
    with open(file_path, 'rb') as f:
        raw_sample = f.read(8192)

    # Check for BOM
    if raw_sample.startswith(b'\xef\xbb\xbf'):
        return 'utf-8-sig'

    result = chardet.detect(raw_sample)
    if result['encoding'] and result['confidence'] > 0.7:
        # ASCII is a subset; answers written back will not be
        if result['encoding'].lower() == 'ascii':
            return 'utf-8'
        return result['encoding']

    for encoding in ['utf-8', 'cp932', 'cp1252']:
        try:
            raw_sample.decode(encoding)
            return encoding
        except (UnicodeDecodeError, LookupError):
            continue

    return 'latin-1'
