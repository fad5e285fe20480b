#!/usr/bin/env python3
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
# Purpose: This module implements the polyscan command line interface: it loads the
#          configuration and rule table, analyzes a file or directory and prints a
#          text or JSON report, exiting non-zero when findings exist.
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

import argparse
import sys
import os
import json
import logging
from pathlib import Path
from typing import List, Optional

from polyscan import __version__
from polyscan.core import AnalysisResults, CancellationToken, AnalysisCancelled, Config, SecurityAnalyzer
from polyscan.rules.owasp_rules import OWASP_CATEGORIES, cwe_label
from polyscan.rules.rule_table import RuleTableInvalid, load_rule_table


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging for the application. Logs go to stderr so JSON output stays clean."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )


def validate_target_path(path: str) -> Path:
    """argparse type: an existing, readable file or directory."""
    target = Path(path)

    if not target.exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {path}")

    if not (target.is_file() or target.is_dir()):
        raise argparse.ArgumentTypeError(f"Path is not a file or directory: {path}")

    if not os.access(target, os.R_OK):
        raise argparse.ArgumentTypeError(f"Path is not readable: {path}")

    return target


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an integer: {value}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"Must be at least 1: {value}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """Build the polyscan argument parser."""
    parser = argparse.ArgumentParser(
        prog='polyscan',
        description='Multi-language static analysis for OWASP Top 10 vulnerabilities',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze a project and print a text summary
  polyscan /path/to/project

  # Machine readable output, only high and critical findings
  polyscan /path/to/project --format json --severity high

  # Overlay a custom rule table on the packaged defaults
  polyscan /path/to/project --rules my_rules.yaml

  # Show the loaded rules
  polyscan --list-rules
        """
    )

    parser.add_argument(
        'target',
        nargs='?',
        type=validate_target_path,
        help='Project directory or single file to scan'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        help='YAML configuration file merged over the defaults'
    )

    parser.add_argument(
        '--rules', '-r',
        type=str,
        help='Path to a YAML rule table overlaid on the packaged defaults'
    )

    parser.add_argument(
        '--severity',
        choices=['low', 'medium', 'high', 'critical'],
        help='Minimum severity level to report (default: low)'
    )

    parser.add_argument(
        '--format', '-f',
        choices=['text', 'json'],
        default='text',
        help='Output format (default: text)'
    )

    parser.add_argument(
        '--workers', '-w',
        type=positive_int,
        help='Maximum number of worker threads'
    )

    parser.add_argument(
        '--exclude',
        type=str,
        action='append',
        help='Extra glob of paths to treat as vendored (repeatable)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Log debug output to stderr'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress all output except warnings, errors and results'
    )

    parser.add_argument(
        '--list-rules',
        action='store_true',
        help='List all loaded detection rules and taint sinks'
    )

    parser.add_argument(
        '--list-languages',
        action='store_true',
        help='List the languages with a parser adapter'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'polyscan {__version__}'
    )

    return parser


def list_rules(config: Config) -> None:
    """Display the loaded rule table grouped by OWASP category."""
    table = load_rule_table(config.get_rule_file(), disabled_rules=config.get_disabled_rules())

    print(f"Rule table version {table.version}")
    print("=" * 50)

    by_owasp = {}
    for rule in table.rules:
        by_owasp.setdefault(rule.owasp[:3], []).append(rule)

    for code in sorted(by_owasp):
        name = OWASP_CATEGORIES.get(code, {}).get('name', 'Other')
        print(f"{code}: {name}")
        for rule in sorted(by_owasp[code], key=lambda r: r.id):
            languages = ', '.join(sorted(rule.languages))
            print(f"    {rule.id:<28} {rule.severity.value:<9} {rule.title} [{languages}]")
        print()

    print(f"Taint sinks ({len(table.taint.sinks)}):")
    for sink in sorted(table.taint.sinks, key=lambda s: s.id):
        print(f"    {sink.id:<28} {sink.severity.boost().value:<9} {sink.title}")
    print(f"\nTotal: {len(table.rules)} rules, {len(table.taint.sources)} taint sources, "
          f"{len(table.taint.sinks)} taint sinks")


def list_languages(config: Config) -> None:
    """Print the languages the registry can parse."""
    analyzer = SecurityAnalyzer(config)
    languages = analyzer.get_supported_languages()

    print("Supported Programming Languages:")
    print("=" * 35)
    for language in languages:
        print(f" {language}")
    print(f"\nTotal: {len(languages)} language(s) supported")


def print_text_report(results: AnalysisResults) -> None:
    summary = results.get_vulnerabilities_by_severity()

    for issue in results.issues:
        print(f"[{issue.severity.value.upper()}] {issue.file}:{issue.line}:{issue.column} "
              f"{issue.rule_id} ({issue.detector.value}, confidence {issue.confidence})")
        print(f"    {issue.message}")
        print(f"    {issue.owasp} | {cwe_label(issue.cwe)} | CVSS {issue.cvss_score}")
        print(f"    Fix: {issue.remediation.description}")
        print()

    print("=" * 50)
    print(f"Files analyzed: {results.files_analyzed}  "
          f"(skipped: {len(results.skipped_files)}, degraded: {len(results.degraded_files)})")
    print(f"Lines analyzed: {results.lines_analyzed}")
    print(f"Issues: {len(results.issues)}  critical={summary['critical']} high={summary['high']} "
          f"medium={summary['medium']} low={summary['low']}")
    print(f"Security score: {results.security_score}  Quality score: {results.quality_score} "
          f"(grade {results.quality_grade})")
    print(f"Technical debt: {results.technical_debt}  Maintainability index: {results.maintainability_index}")
    if results.languages:
        breakdown = ', '.join(f"{m.language} {m.percentage}%" for m in results.languages)
        print(f"Languages: {breakdown}")
    print(f"Analysis time: {results.analysis_time}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run polyscan and return the process exit code."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.verbose and args.quiet:
        parser.error("--verbose and --quiet cannot be used together")

    setup_logging(args.verbose, args.quiet)
    logger = logging.getLogger(__name__)

    try:
        config = Config(args.config) if args.config else Config()

        if args.rules:
            config.set_rule_file(args.rules)
        if args.severity:
            config.set_min_severity(args.severity)
        if args.workers:
            config.set_max_workers(args.workers)
        if args.exclude:
            config.set_exclusions(args.exclude)

        if args.list_rules:
            list_rules(config)
            return 0

        if args.list_languages:
            list_languages(config)
            return 0

        if args.target is None:
            parser.error("the following arguments are required: target")

        analyzer = SecurityAnalyzer(config)
        logger.info(f"Starting security analysis of: {args.target}")
        results = analyzer.analyze_path(args.target, cancel_token=CancellationToken())

        if args.format == 'json':
            print(json.dumps(results.to_dict(), indent=2))
        else:
            print_text_report(results)

        return 1 if results.issues else 0

    except RuleTableInvalid as e:
        logger.error(f"Rule table is invalid ({len(e.errors)} errors)")
        for error in e.errors:
            logger.error(f"  {error}")
        return 2

    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {str(e)}")
        return 2

    except (KeyboardInterrupt, AnalysisCancelled):
        logger.warning("Analysis interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Analysis failed: {str(e)}")
        if args.verbose:
            logger.exception("Detailed error information:")
        return 2


if __name__ == '__main__':
    sys.exit(main())
