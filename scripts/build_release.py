#!/usr/bin/env python3
"""Build a flow-cytometry data release.

Parses every experiment workbook in a directory, merges it with the previous
release and writes two tab-delimited tables:
    - <prefix>_<tag>_final.txt (merged, deduplicated raw data)
    - <prefix>_Full_<tag>_final.txt (raw data plus derived counts and ratios)

Example:
    python scripts/build_release.py \\
        --dictionary data/WNV_Data_Dictionary.xlsx \\
        --workbooks /data/Lund_Flow_fixed \\
        --previous releases/Lund_Flow_21-Mar-2016_final.xlsx \\
        --output-dir releases --tag 12-May-2016
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from flowclean.data.io import load_column_dictionary, write_table
from flowclean.pipeline import ReleaseBuilder, ReleaseConfig
from flowclean.types import FlowCleanError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    """Run one release build."""
    parser = argparse.ArgumentParser(description="Build a flow-cytometry data release")
    parser.add_argument("--dictionary", type=str, required=True,
                        help="Data dictionary workbook or one-name-per-line text file")
    parser.add_argument("--workbooks", type=str, required=True,
                        help="Directory holding experiment workbooks")
    parser.add_argument("--pattern", type=str, default="Expt*.xls*",
                        help="Glob for experiment workbooks inside --workbooks")
    parser.add_argument("--previous", type=str, default=None,
                        help="Previously released raw table to reconcile against")
    parser.add_argument("--output-dir", type=str, default="releases",
                        help="Directory for the release tables")
    parser.add_argument("--prefix", type=str, default=None,
                        help="Output file prefix (default: '<lab>_Flow')")
    parser.add_argument("--tag", type=str, default=None,
                        help="Release tag in file names (default: today, e.g. 12-May-2016)")
    parser.add_argument("--config", type=str, default=None,
                        help="YAML release configuration")
    parser.add_argument("--verbose", action="store_true",
                        help="Log per-column detail")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = ReleaseConfig.from_yaml(args.config) if args.config else ReleaseConfig()
    builder = ReleaseBuilder(config)

    workbook_dir = Path(args.workbooks)
    if not workbook_dir.is_dir():
        logger.error(f"Not a directory: {workbook_dir}")
        return 1
    workbooks = sorted(p for p in workbook_dir.glob(args.pattern) if not p.name.startswith("~$"))
    logger.info(f"Found {len(workbooks)} workbook(s) matching '{args.pattern}' in {workbook_dir}")
    for path in workbooks:
        logger.info(f"  {path.name}")

    dictionary = load_column_dictionary(args.dictionary, sheet=config.dictionary_sheet)
    previous = builder.read_previous(args.previous, dictionary) if args.previous else None

    try:
        result = builder.run(workbooks, dictionary, previous=previous)
    except FlowCleanError as e:
        logger.error(f"Release build failed: {e}")
        return 1

    for issue in result.issues:
        logger.warning(str(issue))

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = args.prefix or f"{config.lab or 'Release'}_Flow"
    tag = args.tag or datetime.now().strftime("%d-%b-%Y")

    write_table(result.raw, output_dir / f"{prefix}_{tag}_final.txt")
    write_table(result.full, output_dir / f"{prefix}_Full_{tag}_final.txt")

    logger.info("\n" + result.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
