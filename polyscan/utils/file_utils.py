# =============================================================================
# Polyscan Multi-Language Static Analysis Engine
# =============================================================================
#
# Author: Keith Pachulski
# Company: Red Cell Security, LLC
# Email: keith@redcellsecurity.org
# Website: www.redcellsecurity.org
#
# Copyright (c) 2025 Keith Pachulski. All rights reserved.
#
# License: This software is licensed under the MIT License.
#          You are free to use, modify, and distribute this software
#          in accordance with the terms of the license.
#
# Purpose: This module holds the file helpers used by the source classifier: binary
#          detection, encoding detection with chardet, language lookup by extension or
#          shebang, minified code detection and line-of-code counting.
#
# DISCLAIMER: This software is provided "as-is," without warranty of any kind,
#             express or implied, including but not limited to the warranties
#             of merchantability, fitness for a particular purpose, and non-infringement.
#             In no event shall the authors or copyright holders be liable for any claim,
#             damages, or other liability, whether in an action of contract, tort, or otherwise,
#             arising from, out of, or in connection with the software or the use or other dealings
#             in the software.
#
# =============================================================================

import re
import logging
from pathlib import PurePosixPath
from typing import Optional, Tuple
import chardet

logger = logging.getLogger(__name__)

# Binary file extensions to avoid
BINARY_EXTENSIONS = {
    '.exe', '.dll', '.so', '.dylib', '.bin', '.obj', '.o', '.a', '.lib',
    '.pyc', '.pyo', '.class', '.jar', '.war', '.ear', '.wasm',
    '.zip', '.tar', '.gz', '.bz2', '.xz', '.7z', '.rar',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.ico', '.webp', '.tiff',
    '.mp3', '.mp4', '.avi', '.mov', '.mkv', '.wmv', '.wav', '.flac',
    '.ttf', '.otf', '.woff', '.woff2', '.eot', '.sqlite', '.db'
}

# Text formats that carry no analyzable code
NON_CODE_EXTENSIONS = {
    '.md', '.markdown', '.rst', '.txt', '.json', '.yaml', '.yml', '.toml',
    '.ini', '.cfg', '.conf', '.lock', '.csv', '.tsv', '.xml', '.svg',
    '.html', '.htm', '.css', '.scss', '.less', '.map', '.log', '.env.example'
}

LANGUAGE_MAP = {
    '.py': 'python',
    '.pyw': 'python',
    '.php': 'php',
    '.php3': 'php',
    '.php4': 'php',
    '.php5': 'php',
    '.phtml': 'php',
    '.inc': 'php',
    '.js': 'javascript',
    '.jsx': 'javascript',
    '.mjs': 'javascript',
    '.cjs': 'javascript',
    '.ts': 'typescript',
    '.tsx': 'typescript',
    '.mts': 'typescript',
    '.cts': 'typescript',
    '.java': 'java',
    '.go': 'go',
    '.c': 'c',
    '.cpp': 'cpp',
    '.cc': 'cpp',
    '.cxx': 'cpp',
    '.hpp': 'cpp',
    '.hh': 'cpp',
    '.cs': 'csharp',
    '.rs': 'rust',
    '.rb': 'ruby',
    '.kt': 'kotlin',
    '.kts': 'kotlin',
    '.swift': 'swift',
    '.scala': 'scala',
    '.pl': 'perl',
    '.pm': 'perl',
    '.sh': 'shell',
    '.bash': 'shell',
    '.zsh': 'shell',
    '.ps1': 'powershell',
    '.sql': 'sql'
}

SHEBANG_LANGUAGES = {
    'python': 'python',
    'node': 'javascript',
    'php': 'php',
    'ruby': 'ruby',
    'perl': 'perl',
    'bash': 'shell',
    'sh': 'shell',
    'zsh': 'shell'
}

CPP_MARKERS = re.compile(
    r'\b(class|namespace|template|typename|public:|private:|protected:|virtual|'
    r'std::|nullptr|constexpr|operator)\b|#include\s*<(iostream|string|vector|map|memory)>'
)
C_MARKERS = re.compile(r'\b(typedef\s+struct|malloc|free|printf|#include\s*<(stdio|stdlib|string)\.h>)')

HASH_COMMENT_LANGUAGES = {'python', 'shell', 'ruby', 'perl', 'powershell'}
C_STYLE_LANGUAGES = {'javascript', 'typescript', 'java', 'c', 'cpp', 'csharp', 'go',
                     'rust', 'kotlin', 'swift', 'scala', 'php'}


def is_binary_content(data: bytes, sample_size: int = 8192) -> bool:
    """
    Determine if raw content is binary.

    Args:
        data (bytes): File content
        sample_size (int): Number of bytes to sample

    Returns:
        bool: True if content appears to be binary
    """
    sample = data[:sample_size]
    if not sample:
        return False  # Empty files are considered text

    # Check for null bytes (strong indicator of binary)
    if b'\x00' in sample:
        return True

    try:
        sample.decode('utf-8')
        return False
    except UnicodeDecodeError:
        pass

    # Check for high percentage of printable characters
    printable_chars = sum(1 for byte in sample if 32 <= byte <= 126 or byte in (9, 10, 13) or byte >= 128)
    return printable_chars / len(sample) <= 0.75


def decode_content(data: bytes) -> Tuple[str, str]:
    """
    Decode file content with encoding detection.

    Args:
        data (bytes): Raw file content

    Returns:
        tuple: (decoded text, encoding name)
    """
    # Try UTF-8 first
    try:
        return data.decode('utf-8-sig' if data.startswith(b'\xef\xbb\xbf') else 'utf-8'), 'utf-8'
    except UnicodeDecodeError:
        pass

    detected = chardet.detect(data)
    if detected and detected.get('encoding') and (detected.get('confidence') or 0) > 0.6:
        try:
            return data.decode(detected['encoding'], errors='replace'), detected['encoding'].lower()
        except (UnicodeDecodeError, LookupError):
            pass

    # Fallback to latin-1 (can decode any byte sequence)
    return data.decode('latin-1', errors='replace'), 'latin-1'


def extension_of(path: str) -> str:
    return PurePosixPath(path).suffix.lower()


def get_file_language(path: str) -> Optional[str]:
    """
    Determine the programming language of a file from its extension.

    Args:
        path (str): Relative path of the file

    Returns:
        str: Language name or None if unknown
    """
    return LANGUAGE_MAP.get(extension_of(path))


def language_from_shebang(first_line: str) -> Optional[str]:
    """Resolve an interpreter line such as ``#!/usr/bin/env python3``."""
    if not first_line.startswith('#!'):
        return None
    words = first_line[2:].strip().split()
    if not words:
        return None
    interpreter = words[-1] if words[0].endswith('/env') and len(words) > 1 else words[0]
    interpreter = interpreter.rsplit('/', 1)[-1]
    interpreter = re.sub(r'[\d.]+$', '', interpreter)
    return SHEBANG_LANGUAGES.get(interpreter)


def guess_header_language(text: str) -> str:
    """Decide whether a ``.h`` header is C or C++ by keyword frequency."""
    cpp_hits = len(CPP_MARKERS.findall(text))
    c_hits = len(C_MARKERS.findall(text))
    return 'cpp' if cpp_hits > c_hits else 'c'


def is_qt_translation(text: str) -> bool:
    """``.ts`` files are also used for Qt Linguist translation catalogs."""
    head = text.lstrip()[:512]
    return head.startswith('<?xml') or '<TS' in head or '<!DOCTYPE TS>' in head


def is_minified(text: str, max_average_line_length: int) -> bool:
    """Minified bundles have few, very long lines."""
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return False
    average = sum(len(line) for line in lines) / len(lines)
    return average > max_average_line_length


def truncate_text(text: str, max_bytes: int, encoding: str = 'utf-8') -> str:
    """Cut text at the last full line that fits in ``max_bytes`` once encoded."""
    data = text.encode(encoding, errors='replace')
    if len(data) <= max_bytes:
        return text
    cut = data.rfind(b'\n', 0, max_bytes)
    data = data[:cut + 1] if cut > 0 else data[:max_bytes]
    # a multibyte character split at the cut is dropped
    return data.decode(encoding, errors='ignore')


def count_lines_of_code(text: str, language: Optional[str]) -> int:
    """
    Count lines of code (excluding empty lines and comments).

    Args:
        text (str): Decoded file content
        language (str): Language tag

    Returns:
        int: Number of lines of code
    """
    loc = 0
    in_multiline_comment = False

    for line in text.splitlines():
        line = line.strip()

        # Skip empty lines
        if not line:
            continue

        if language == 'python':
            # Handle Python comments and docstrings
            if line.startswith('#'):
                continue
            if '"""' in line or "'''" in line:
                if line.count('"""') % 2 == 1 or line.count("'''") % 2 == 1:
                    in_multiline_comment = not in_multiline_comment
                if in_multiline_comment or line in ('"""', "'''"):
                    continue
            if in_multiline_comment:
                continue

        elif language in C_STYLE_LANGUAGES:
            # Handle C-style comments
            if in_multiline_comment:
                if '*/' in line:
                    in_multiline_comment = False
                continue
            if line.startswith('//') or (language == 'php' and line.startswith('#')):
                continue
            if line.startswith('/*'):
                in_multiline_comment = '*/' not in line
                continue

        elif language in HASH_COMMENT_LANGUAGES:
            if line.startswith('#'):
                continue

        elif language == 'sql':
            if line.startswith('--'):
                continue

        # If we get here, it's a line of code
        loc += 1

    return loc
