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
# Purpose: This module implements the source classifier, which decides for every archive
#          entry whether it is analyzable source, which language it is written in, or
#          why it was skipped.
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

import fnmatch
import logging
from pathlib import PurePosixPath
from typing import Union

from polyscan.core import Config, SourceFile, FileSkipped, SkipReason
from polyscan.utils.file_utils import (
    BINARY_EXTENSIONS, NON_CODE_EXTENSIONS, is_binary_content, decode_content,
    extension_of, get_file_language, language_from_shebang, guess_header_language,
    is_qt_translation, is_minified, truncate_text, count_lines_of_code
)

logger = logging.getLogger(__name__)


class SourceClassifier:
    """
    Decides, per archive entry, whether it is analyzable source and in which
    language. Checks run cheapest first so most skips never decode content.
    """

    def __init__(self, config: Config):
        self.config = config
        self.vendored_dirs = set(config.get_vendored_dirs())
        self.vendored_patterns = config.get_vendored_patterns()
        self.fixture_dirs = set(config.get_fixture_dirs())
        self.max_file_size = config.get_max_file_size_bytes()
        self.fixture_size_cap = config.get_fixture_size_cap_bytes()
        self.minified_line_length = config.get_minified_line_length()

    def classify(self, path: str, data: bytes) -> Union[SourceFile, FileSkipped]:
        """
        Classify one archive entry.

        Args:
            path: Relative path inside the upload
            data: Raw file content

        Returns:
            SourceFile when the entry should be analyzed, FileSkipped otherwise
        """
        parts = PurePosixPath(path).parts
        name = parts[-1] if parts else path

        if self._is_vendored(parts, name):
            return FileSkipped(path, SkipReason.VENDORED, "Vendored or generated path")

        extension = extension_of(path)
        if extension in BINARY_EXTENSIONS:
            return FileSkipped(path, SkipReason.BINARY, f"Binary extension {extension}")

        if is_binary_content(data):
            return FileSkipped(path, SkipReason.BINARY, "Binary content")

        language = get_file_language(path)
        text = None
        encoding = 'utf-8'

        if extension == '.h':
            text, encoding = decode_content(data)
            language = guess_header_language(text)
        elif extension == '.ts':
            text, encoding = decode_content(data)
            if is_qt_translation(text):
                return FileSkipped(path, SkipReason.NOT_CODE, "Qt translation catalog")
        elif language is None and not extension:
            text, encoding = decode_content(data)
            first_line = text.split('\n', 1)[0]
            language = language_from_shebang(first_line)

        if language is None:
            if extension in NON_CODE_EXTENSIONS or name.lower() in ('license', 'readme', 'changelog'):
                return FileSkipped(path, SkipReason.NOT_CODE, f"Non-code file {name}")
            return FileSkipped(path, SkipReason.NOT_CODE, f"Unrecognized file type {extension or name}")

        if not self.config.is_language_enabled(language):
            return FileSkipped(path, SkipReason.LANGUAGE_DISABLED, f"Language {language} is disabled")

        if text is None:
            text, encoding = decode_content(data)

        if is_minified(text, self.minified_line_length):
            return FileSkipped(path, SkipReason.MINIFIED, "Average line length suggests minified code")

        if self._is_fixture(parts) and len(data) > self.fixture_size_cap:
            return FileSkipped(path, SkipReason.FIXTURE_SIZE,
                               f"Test fixture of {len(data)} bytes exceeds {self.fixture_size_cap}")

        partial = False
        if len(data) > self.max_file_size:
            text = truncate_text(text, self.max_file_size, encoding)
            partial = True
            logger.warning(f"Truncated {path} from {len(data)} bytes to {self.max_file_size} byte ceiling")

        return SourceFile(path=path, language=language, text=text, size=len(data),
                          encoding=encoding, partial=partial)

    def count_lines_of_code(self, source: SourceFile) -> int:
        return count_lines_of_code(source.text, source.language)

    def _is_vendored(self, parts, name: str) -> bool:
        if any(part in self.vendored_dirs for part in parts[:-1]):
            return True
        return any(fnmatch.fnmatch(name, pattern) for pattern in self.vendored_patterns)

    def _is_fixture(self, parts) -> bool:
        return any(part in self.fixture_dirs for part in parts[:-1])
