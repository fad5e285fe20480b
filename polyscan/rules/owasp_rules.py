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
# Purpose: This module holds the OWASP Top 10 2021 and CWE reference tables used to label
#          rules, taint sinks and secret findings, plus the lookup helpers around them.
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
from typing import Dict, List, Optional

from polyscan.core import RuleCategory

# OWASP Top 10 2021 Categories
OWASP_CATEGORIES = {
    'A01': {
        'name': 'Broken Access Control',
        'url': 'https://owasp.org/Top10/A01_2021-Broken_Access_Control/'
    },
    'A02': {
        'name': 'Cryptographic Failures',
        'url': 'https://owasp.org/Top10/A02_2021-Cryptographic_Failures/'
    },
    'A03': {
        'name': 'Injection',
        'url': 'https://owasp.org/Top10/A03_2021-Injection/'
    },
    'A04': {
        'name': 'Insecure Design',
        'url': 'https://owasp.org/Top10/A04_2021-Insecure_Design/'
    },
    'A05': {
        'name': 'Security Misconfiguration',
        'url': 'https://owasp.org/Top10/A05_2021-Security_Misconfiguration/'
    },
    'A06': {
        'name': 'Vulnerable and Outdated Components',
        'url': 'https://owasp.org/Top10/A06_2021-Vulnerable_and_Outdated_Components/'
    },
    'A07': {
        'name': 'Identification and Authentication Failures',
        'url': 'https://owasp.org/Top10/A07_2021-Identification_and_Authentication_Failures/'
    },
    'A08': {
        'name': 'Software and Data Integrity Failures',
        'url': 'https://owasp.org/Top10/A08_2021-Software_and_Data_Integrity_Failures/'
    },
    'A09': {
        'name': 'Security Logging and Monitoring Failures',
        'url': 'https://owasp.org/Top10/A09_2021-Security_Logging_and_Monitoring_Failures/'
    },
    'A10': {
        'name': 'Server-Side Request Forgery',
        'url': 'https://owasp.org/Top10/A10_2021-Server-Side_Request_Forgery_%28SSRF%29/'
    }
}

VALID_OWASP_CODES = set(OWASP_CATEGORIES)

# Weaknesses referenced by the bundled rule table
CWE_NAMES = {
    'CWE-22': 'Improper Limitation of a Pathname to a Restricted Directory',
    'CWE-78': 'OS Command Injection',
    'CWE-79': 'Cross-site Scripting',
    'CWE-89': 'SQL Injection',
    'CWE-94': 'Code Injection',
    'CWE-95': 'Eval Injection',
    'CWE-98': 'PHP Remote File Inclusion',
    'CWE-295': 'Improper Certificate Validation',
    'CWE-327': 'Use of a Broken or Risky Cryptographic Algorithm',
    'CWE-328': 'Use of Weak Hash',
    'CWE-330': 'Use of Insufficiently Random Values',
    'CWE-338': 'Use of Cryptographically Weak PRNG',
    'CWE-489': 'Active Debug Code',
    'CWE-502': 'Deserialization of Untrusted Data',
    'CWE-798': 'Use of Hard-coded Credentials',
    'CWE-918': 'Server-Side Request Forgery',
    'CWE-942': 'Permissive Cross-domain Policy'
}

# Classification used when a rule or sink leaves owasp/cwe empty
CATEGORY_DEFAULTS = {
    RuleCategory.INJECTION: ('A03', 'CWE-74'),
    RuleCategory.XSS: ('A03', 'CWE-79'),
    RuleCategory.SECRET: ('A07', 'CWE-798'),
    RuleCategory.CRYPTO: ('A02', 'CWE-327'),
    RuleCategory.DESERIALIZATION: ('A08', 'CWE-502'),
    RuleCategory.PATH_TRAVERSAL: ('A01', 'CWE-22'),
    RuleCategory.MISCONFIGURATION: ('A05', 'CWE-16')
}

_OWASP_CODE = re.compile(r'^(A(?:0[1-9]|10))(?::2021)?\b')
_CWE_ID = re.compile(r'^(?:CWE-)?(\d+)$', re.IGNORECASE)


def owasp_code(value: str) -> Optional[str]:
    """Extract the ``Axx`` code from ``A03``, ``A03:2021`` or a full label."""
    match = _OWASP_CODE.match(str(value or '').strip())
    return match.group(1) if match else None


def owasp_label(code: str) -> str:
    """
    Render an OWASP code as it appears on findings.

    Args:
        code: ``A03`` or any string starting with it

    Returns:
        str: ``A03:2021 - Injection``, or the input unchanged when unknown
    """
    key = owasp_code(code)
    if key is None:
        return str(code or '')
    return f"{key}:2021 - {OWASP_CATEGORIES[key]['name']}"


def normalize_cwe(value) -> Optional[str]:
    """Accept ``89``, ``"89"`` or ``"CWE-89"``; return ``CWE-89`` or None."""
    match = _CWE_ID.match(str(value).strip())
    return f"CWE-{match.group(1)}" if match else None


def cwe_label(cwe: str) -> str:
    name = CWE_NAMES.get(cwe)
    return f"{cwe}: {name}" if name else cwe


def default_classification(category: RuleCategory) -> Dict[str, str]:
    code, cwe = CATEGORY_DEFAULTS[category]
    return {'owasp': owasp_label(code), 'cwe': cwe}


def default_references(owasp: str, cwe: str) -> List[str]:
    """Reference links derived from a finding's classification."""
    references = []
    key = owasp_code(owasp)
    if key:
        references.append(OWASP_CATEGORIES[key]['url'])
    match = _CWE_ID.match(cwe or '')
    if match:
        references.append(f"https://cwe.mitre.org/data/definitions/{match.group(1)}.html")
    return references
