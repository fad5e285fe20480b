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
# Purpose: Rules package: the declarative rule table loader and validator, the structural
#          rule engine and the OWASP Top 10 / CWE reference data.
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

from .rule_table import (
    RuleTable,
    RuleTableInvalid,
    RuleValidator,
    TaintTable,
    load_rule_table,
    DEFAULT_RULE_FILE
)

from .rule_engine import RuleEngine

from .owasp_rules import (
    OWASP_CATEGORIES,
    owasp_label,
    normalize_cwe
)

__all__ = [
    # Rule table
    'RuleTable',
    'RuleTableInvalid',
    'RuleValidator',
    'TaintTable',
    'load_rule_table',
    'DEFAULT_RULE_FILE',

    # Rule engine
    'RuleEngine',

    # OWASP reference data
    'OWASP_CATEGORIES',
    'owasp_label',
    'normalize_cwe'
]
