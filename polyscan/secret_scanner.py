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
# Purpose: This module implements the secret scanner: provider signature matching over raw
#          text and a Shannon entropy pass over string literals, producing redacted
#          Secret Detection candidates.
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
import math
import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Pattern, Set, Tuple

from polyscan.core import CandidateFinding, Config, Deadline, Detector, RuleCategory, Severity, SourceFile
from polyscan.language_modules.cst import CstNode, string_literals
from polyscan.rules.owasp_rules import default_references, owasp_label
from polyscan.rules.rule_table import FindingTemplates, compile_finding_templates

logger = logging.getLogger(__name__)

SECRET_CATEGORY = "Secret Detection"
SECRET_OWASP = owasp_label("A07")
SECRET_CWE = "CWE-798"

# Lowercase fragments that mark a value as a placeholder rather than a credential
PLACEHOLDER_MARKERS = (
    'changeme', 'change_me', 'change-me', 'xxxx', 'your_', 'your-', 'yourkey',
    'example', 'placeholder', 'dummy', 'sample', 'redacted', 'insert_', 'replace_me',
    '****', '${', '{{', '<', 'process.env', 'os.environ', 'getenv', 'env(', 'config.'
)

ENTROPY_CHARSET = re.compile(r'^[A-Za-z0-9+/=_\-.:~]+$')
QUOTED_STRING = re.compile(r'(["\'`])((?:(?!\1)[^\\\n]|\\.)*)\1')


@dataclass(frozen=True)
class SecretSignature:
    """A provider-specific credential pattern."""
    id: str
    name: str
    pattern: Pattern
    severity: Severity
    confidence: int
    min_entropy: float = 0.0
    value_group: int = 0


def _signature(signature_id: str, name: str, pattern: str, severity: Severity, confidence: int,
               min_entropy: float = 0.0, value_group: int = 0, flags: int = 0) -> SecretSignature:
    return SecretSignature(signature_id, name, re.compile(pattern, flags), severity, confidence,
                           min_entropy, value_group)


SIGNATURES: Tuple[SecretSignature, ...] = (
    _signature('SECRET-PRIVATE-KEY', "Private Key",
               r'-----BEGIN[A-Z ]*PRIVATE KEY-----[\s\S]*?-----END[A-Z ]*PRIVATE KEY-----',
               Severity.CRITICAL, 98, flags=re.DOTALL),
    _signature('SECRET-AWS-ACCESS-KEY', "AWS Access Key ID",
               r'\b(?:A3T[A-Z0-9]|AKIA|ASIA|AGPA|AIDA|AROA|AIPA|ANPA|ANVA)[A-Z0-9]{16}\b',
               Severity.CRITICAL, 95, min_entropy=3.0),
    _signature('SECRET-AWS-SECRET-KEY', "AWS Secret Access Key",
               r'(?i)aws_?secret_?(?:access_?)?key["\']?\s*[:=]\s*["\']?([A-Za-z0-9/+=]{40})\b',
               Severity.CRITICAL, 90, min_entropy=4.0, value_group=1),
    _signature('SECRET-STRIPE-KEY', "Stripe API Key",
               r'\b(?:sk|pk|rk)_(?:live|test)_[0-9a-zA-Z]{24,}\b',
               Severity.CRITICAL, 95, min_entropy=4.0),
    _signature('SECRET-GITHUB-TOKEN', "GitHub Token",
               r'\bgh[pousr]_[A-Za-z0-9_]{36,255}\b',
               Severity.HIGH, 95, min_entropy=3.5),
    _signature('SECRET-GITHUB-PAT', "GitHub Fine-Grained Personal Access Token",
               r'\bgithub_pat_[A-Za-z0-9_]{22,}\b',
               Severity.HIGH, 95, min_entropy=4.0),
    _signature('SECRET-GITLAB-TOKEN', "GitLab Personal Access Token",
               r'\bglpat-[A-Za-z0-9_\-]{20,}',
               Severity.HIGH, 95, min_entropy=4.0),
    _signature('SECRET-SLACK-TOKEN', "Slack Token",
               r'\bxox[bpars]-[0-9A-Za-z]{10,48}-[0-9A-Za-z]{10,48}(?:-[0-9A-Za-z]{24,48})?',
               Severity.HIGH, 90, min_entropy=3.0),
    _signature('SECRET-SLACK-WEBHOOK', "Slack Webhook URL",
               r'https://hooks\.slack\.com/services/T[A-Z0-9]+/B[A-Z0-9]+/[A-Za-z0-9]+',
               Severity.MEDIUM, 85, min_entropy=3.0),
    _signature('SECRET-GOOGLE-API-KEY', "Google API Key",
               r'\bAIza[0-9A-Za-z_\-]{35}',
               Severity.HIGH, 90, min_entropy=4.0),
    _signature('SECRET-GOOGLE-OAUTH', "Google OAuth Client Secret",
               r'\bGOCSPX-[A-Za-z0-9_\-]{28}',
               Severity.HIGH, 95, min_entropy=4.0),
    _signature('SECRET-OPENAI-KEY', "OpenAI API Key",
               r'\bsk-(?:proj-)?[A-Za-z0-9]{20,}T3BlbkFJ[A-Za-z0-9]{20,}',
               Severity.HIGH, 95, min_entropy=4.5),
    _signature('SECRET-ANTHROPIC-KEY', "Anthropic API Key",
               r'\bsk-ant-(?:api03-)?[A-Za-z0-9_\-]{93,}',
               Severity.HIGH, 95, min_entropy=4.5),
    _signature('SECRET-NPM-TOKEN', "npm Access Token",
               r'\bnpm_[A-Za-z0-9]{36}\b',
               Severity.HIGH, 90, min_entropy=4.0),
    _signature('SECRET-SENDGRID-KEY', "SendGrid API Key",
               r'\bSG\.[A-Za-z0-9_\-]{22}\.[A-Za-z0-9_\-]{43}',
               Severity.HIGH, 90, min_entropy=4.0),
    _signature('SECRET-JWT', "JSON Web Token",
               r'\beyJ[A-Za-z0-9_\-]{8,}\.eyJ[A-Za-z0-9_\-]{8,}\.[A-Za-z0-9_\-]{8,}',
               Severity.MEDIUM, 80, min_entropy=4.0),
    _signature('SECRET-CONNECTION-STRING', "Database Connection String with Credentials",
               r'\b(?:mongodb(?:\+srv)?|mysql|postgresql|postgres|redis|mssql|amqp)://[^\s:"\'/@]+:([^\s@"\']+)@[^\s"\']+',
               Severity.HIGH, 85, value_group=1),
    _signature('SECRET-GENERIC-API-KEY', "Generic API Key",
               r'(?i)\b(?:api[_-]?key|apikey|access[_-]?token|secret[_-]?key|auth[_-]?token|client[_-]?secret)'
               r'["\']?\s*[:=]\s*["\']([A-Za-z0-9_\-]{20,})["\']',
               Severity.MEDIUM, 75, min_entropy=3.5, value_group=1),
    _signature('SECRET-GENERIC-PASSWORD', "Hardcoded Password",
               r'(?i)\b(?:password|passwd|pwd|secret)["\']?\s*[:=]\s*["\']([^"\'\s]{8,})["\']',
               Severity.MEDIUM, 70, min_entropy=2.5, value_group=1),
)

REMEDIATION_DESCRIPTION = (
    "Remove the credential from source code and rotate it. Load secrets at runtime "
    "from environment variables or a secrets manager."
)
REMEDIATION_EXAMPLE = 'api_key = os.environ["SERVICE_API_KEY"]'


def shannon_entropy(value: str) -> float:
    """Shannon entropy of a string in bits per character."""
    if not value:
        return 0.0
    length = len(value)
    return -sum((count / length) * math.log2(count / length) for count in Counter(value).values())


def is_placeholder(value: str) -> bool:
    lowered = value.lower()
    if any(marker in lowered for marker in PLACEHOLDER_MARKERS):
        return True
    # A single repeated character such as "aaaaaaaa"
    return len(set(lowered)) <= 2


def redact(value: str, visible: int = 4) -> str:
    """Keep a short prefix of a secret for identification and mask the rest."""
    value = value.strip()
    if len(value) <= visible:
        return '*' * len(value)
    return value[:visible] + '*' * min(len(value) - visible, 12)


class SecretScanner:
    """
    Detects hardcoded credentials with two independent passes:

    1. Provider signatures over the raw text, each with its own confidence
       and an entropy floor that filters obviously fake values.
    2. Shannon entropy over string literals, reported as a possible secret
       with Low or Medium severity and confidence capped at 60.
    """

    ENTROPY_MAX_CONFIDENCE = 60
    ENTROPY_BASE_CONFIDENCE = 40

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        settings = self.config.get_secret_settings()
        self.entropy_threshold = float(settings.get('entropy_threshold', 4.0))
        self.min_length = int(settings.get('min_length', 20))
        self.max_length = int(settings.get('max_length', 200))
        self.templates = self._build_templates()

    @staticmethod
    def _build_templates() -> FindingTemplates:
        return compile_finding_templates(
            message="{{ title }} detected: {{ redacted }}",
            description=REMEDIATION_DESCRIPTION,
            example_fix=REMEDIATION_EXAMPLE,
            summary=("A {{ title | lower }} is hardcoded in {{ file }} at line {{ line }}. "
                     "Anyone with access to the source can use it.")
        )

    def scan(self, source: SourceFile, tree: Optional[CstNode] = None,
             deadline: Optional[Deadline] = None) -> List[CandidateFinding]:
        """
        Scan one file for hardcoded secrets.

        Args:
            source: The classified source file
            tree: Its normalized tree, or None when the parse was degraded
            deadline: Per-file wall-clock budget

        Returns:
            List[CandidateFinding]: Secret detector candidates
        """
        findings, covered = self._scan_signatures(source, deadline)
        if deadline is not None:
            deadline.check()
        findings.extend(self._scan_entropy(source, tree, covered))

        if findings:
            logger.debug(f"Secret scanner: {len(findings)} candidates in {source.path}")
        return findings

    # -------------------------------------------------------------------------
    # signature pass
    # -------------------------------------------------------------------------

    def _scan_signatures(self, source: SourceFile,
                         deadline: Optional[Deadline]) -> Tuple[List[CandidateFinding], List[Tuple[int, int]]]:
        findings: List[CandidateFinding] = []
        covered: List[Tuple[int, int]] = []
        seen: Set[Tuple[str, int]] = set()

        for signature in SIGNATURES:
            if deadline is not None:
                deadline.check()
            for match in signature.pattern.finditer(source.text):
                value = match.group(signature.value_group)
                if not value or is_placeholder(value):
                    continue
                if signature.min_entropy and shannon_entropy(value) < signature.min_entropy:
                    continue

                start, end = match.span()
                line, column = source.position(start)
                if (signature.id, line) in seen:
                    continue
                seen.add((signature.id, line))
                covered.append((start, end))

                end_line, end_column = source.position(end)
                findings.append(self._candidate(
                    rule_id=signature.id,
                    title=signature.name,
                    severity=signature.severity,
                    confidence=signature.confidence,
                    value=value,
                    span=(line, column, end_line, end_column),
                    tags=('secret', 'signature')
                ))
        return findings, covered

    # -------------------------------------------------------------------------
    # entropy pass
    # -------------------------------------------------------------------------

    def _scan_entropy(self, source: SourceFile, tree: Optional[CstNode],
                      covered: List[Tuple[int, int]]) -> List[CandidateFinding]:
        findings = []
        for value, start, end in self._string_candidates(source, tree):
            if any(start < cover_end and cover_start < end for cover_start, cover_end in covered):
                continue
            if not self.min_length <= len(value) <= self.max_length:
                continue
            if not ENTROPY_CHARSET.match(value) or is_placeholder(value):
                continue

            entropy = shannon_entropy(value)
            if entropy <= self.entropy_threshold:
                continue

            excess = entropy - self.entropy_threshold
            confidence = min(self.ENTROPY_MAX_CONFIDENCE,
                             int(self.ENTROPY_BASE_CONFIDENCE + excess * 10))
            severity = Severity.MEDIUM if excess >= 0.5 else Severity.LOW

            line, column = source.position(start)
            end_line, end_column = source.position(end)
            findings.append(self._candidate(
                rule_id='SECRET-HIGH-ENTROPY',
                title="Possible Secret",
                severity=severity,
                confidence=confidence,
                value=value,
                span=(line, column, end_line, end_column),
                tags=('secret', 'entropy')
            ))
        return findings

    def _string_candidates(self, source: SourceFile,
                           tree: Optional[CstNode]) -> List[Tuple[str, int, int]]:
        """``(value, start_offset, end_offset)`` of every string literal."""
        candidates = []
        if tree is not None:
            for literal, _ in string_literals(tree):
                value = literal.attr('value')
                if not isinstance(value, str):
                    continue
                span = literal.span
                start = source.line_index.line_start(span.start_line) + span.start_column
                end = source.line_index.line_start(span.end_line) + span.end_column
                candidates.append((value, start, max(end, start + len(value))))
        else:
            for match in QUOTED_STRING.finditer(source.text):
                candidates.append((match.group(2), match.start(), match.end()))
        return candidates

    # -------------------------------------------------------------------------

    def _candidate(self, rule_id: str, title: str, severity: Severity, confidence: int,
                   value: str, span: Tuple[int, int, int, int],
                   tags: Tuple[str, ...]) -> CandidateFinding:
        line, column, end_line, end_column = span
        redacted = redact(value)
        return CandidateFinding(
            detector=Detector.SECRET,
            rule_id=rule_id,
            title=title,
            category=SECRET_CATEGORY,
            rule_category=RuleCategory.SECRET,
            severity=severity,
            confidence=confidence,
            line=line,
            column=column,
            end_line=end_line,
            end_column=end_column,
            cwe=SECRET_CWE,
            owasp=SECRET_OWASP,
            message=f"{title} detected: {redacted}",
            templates=self.templates,
            context={
                'title': title,
                'description': "",
                'redacted': redacted,
                'entropy': round(shannon_entropy(value), 2),
                'source': "",
                'sink': ""
            },
            references=tuple(default_references("A07", SECRET_CWE)),
            tags=tags
        )
