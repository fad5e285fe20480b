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
# Purpose: This module implements the fallback adapter for languages without a bundled
#          grammar. It produces a degraded tree so secret scanning still applies.
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

import logging
from typing import List

from polyscan.core import SourceFile
from polyscan.language_modules.base_adapter import BaseAdapter, program_node, unknown_node
from polyscan.language_modules.cst import CstNode, Span, UNKNOWN_NO_GRAMMAR

logger = logging.getLogger(__name__)


class TextAdapter(BaseAdapter):
    """
    Fallback for recognized languages without a bundled grammar.

    The tree is a single ``Unknown(no_grammar)`` region, so structural rules
    and taint tracking see nothing while the secret scanner still runs over
    the raw text.
    """

    @property
    def language_names(self) -> List[str]:
        return ['text', 'c', 'cpp', 'csharp', 'ruby', 'rust', 'kotlin', 'swift',
                'scala', 'perl', 'shell', 'sql', 'powershell']

    @property
    def file_extensions(self) -> List[str]:
        return []

    def build_tree(self, source: SourceFile) -> CstNode:
        last_line = max(1, source.line_count)
        span = Span(1, 0, last_line, len(source.line_text(last_line)))
        return program_node(span, [unknown_node(span, source.language, UNKNOWN_NO_GRAMMAR)])
