"""
Command-line entry point.

Examples:
  # All configured checklist variants
  barcode-gaps --config config/config.yml

  # Re-query BOLD for the WRiMS checklist only, four lookups at a time
  barcode-gaps --config config/config.yml --variant wrims --refresh --workers 4
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from barcode_gaps.cache import JsonFileCache
from barcode_gaps.config import load_config
from barcode_gaps.errors import ChecklistUnavailable, ConfigurationError
from barcode_gaps.pipeline import run

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(output_dir: Path, log_level: str = 'INFO') -> logging.Logger:
    """
    Configure logging to both file and console.

    Args:
        output_dir: Directory for the log file
        log_level: Level name (DEBUG, INFO, WARNING, ERROR)

    Returns:
        logging.Logger: The package logger
    """
    numeric_level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {log_level}')

    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = output_dir / 'barcode_gaps_log.txt'

    logger = logging.getLogger('barcode_gaps')
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    fh = logging.FileHandler(log_file, mode='w', encoding='utf-8')
    fh.setLevel(numeric_level)
    fh.setFormatter(formatter)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(numeric_level)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Assess BOLD barcode gaps for South Pacific species checklists',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--config', type=Path, help='Path to config.yml (default: built-in settings)')
    parser.add_argument(
        '--variant',
        action='append',
        dest='variants',
        help='Checklist variant to analyse; repeat for several (default: all configured)',
    )
    parser.add_argument('--output-dir', type=Path, help='Directory for tables, charts and the log')
    parser.add_argument('--cache-dir', type=Path, help='Directory for cached checklists and BOLD results')
    parser.add_argument('--refresh', action='store_true', help='Discard cached checklists and BOLD results and fetch again')
    parser.add_argument('--workers', type=int, help='Concurrent BOLD lookups (default: from config)')
    parser.add_argument('--no-charts', action='store_true', help='Write tables only')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: from config, INFO)',
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.workers is not None and args.workers < 1:
        parser.error('--workers must be at least 1')

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.workers is not None:
        config['bold']['max_workers'] = args.workers
    output_dir = args.output_dir or Path(config['output_dir'])
    cache_dir = args.cache_dir or Path(config['cache_dir'])

    logger = setup_logging(output_dir, args.log_level or config['log_level'])

    logger.info("=" * 80)
    logger.info("South Pacific barcode gap analysis")
    logger.info("=" * 80)
    logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info(f"Accepted markers: {', '.join(map(str, config['accepted_markers']))}")

    try:
        run(
            config,
            JsonFileCache(cache_dir),
            output_dir,
            variants=args.variants,
            refresh=args.refresh,
            charts=config['charts'] and not args.no_charts,
        )
    except (ConfigurationError, ChecklistUnavailable) as e:
        logger.error(f"Run failed: {e}")
        return 1

    logger.info("=" * 80)
    logger.info("Gap analysis complete!")
    logger.info(f"End time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("=" * 80)
    return 0


if __name__ == '__main__':
    sys.exit(main())
