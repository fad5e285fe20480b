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
# Purpose: This package holds the normalized syntax tree model and one adapter per
#          supported grammar. Adapters are discovered by the registry in core.py by
#          scanning the <language>/adapter.py modules below this directory.
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

from .cst import (
    CstNode,
    NodeKind,
    Span,
    ParseDegraded,
    ParseResult,
    make_node,
    dotted_path,
)

__all__ = [
    'CstNode', 'NodeKind', 'Span', 'ParseDegraded', 'ParseResult',
    'make_node', 'dotted_path'
]
