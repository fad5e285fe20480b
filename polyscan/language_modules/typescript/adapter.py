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
# Purpose: This module implements the TypeScript and TSX language adapter by extending
#          the JavaScript node catalog with the type-level syntax of tree-sitter-typescript.
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

import tree_sitter_typescript as ts_ts
from tree_sitter import Language

from polyscan.core import SourceFile
from polyscan.language_modules.javascript.adapter import JavaScriptConverter
from polyscan.language_modules.treesitter_adapter import TreeSitterAdapter

logger = logging.getLogger(__name__)

TS_LANG = Language(ts_ts.language_typescript())
TSX_LANG = Language(ts_ts.language_tsx())


class TypeScriptConverter(JavaScriptConverter):
    """TypeScript adds type syntax on top of the JavaScript catalog."""

    HANDLERS = dict(JavaScriptConverter.HANDLERS, **{
        'abstract_class_declaration': 'unknown',
        'public_field_definition': 'field_definition',
    })

    TRANSPARENT = JavaScriptConverter.TRANSPARENT | {
        'as_expression', 'satisfies_expression', 'non_null_expression', 'type_assertion'
    }
    SKIPPED = JavaScriptConverter.SKIPPED | {
        'type_annotation', 'type_arguments', 'type_parameters', 'interface_declaration',
        'type_alias_declaration', 'accessibility_modifier', 'override_modifier',
        'ambient_declaration'
    }


class TypeScriptAdapter(TreeSitterAdapter):
    """TypeScript adapter; ``.tsx`` files use the TSX grammar."""

    converter_class = TypeScriptConverter

    @property
    def language_names(self) -> List[str]:
        return ['typescript']

    @property
    def file_extensions(self) -> List[str]:
        return ['.ts', '.tsx', '.mts', '.cts']

    def get_language(self, source: SourceFile) -> Language:
        if source.path.lower().endswith('.tsx'):
            return TSX_LANG
        return TS_LANG
