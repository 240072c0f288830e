from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List

from .catalog import StageCatalog
from .core import dumps_json
from .normalizer import NormalizerConfig
from .pipeline import normalization_summary, run_normalization_batch, validate_file


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="photoflow-runner",
        description=(
            "Run the local image stages without the HTTP gateway:"
            " normalize staged uploads or validate a single image."
        ),
    )
    p.add_argument("--storage-root", default=os.getenv("STORAGE_ROOT", "data"), help="Storage root directory")
    p.add_argument("--json-out", help="Write JSON results to path")
    sub = p.add_subparsers(dest="command", required=True)

    normalize = sub.add_parser("normalize", help="Normalize uploads (all when no filenames given)")
    normalize.add_argument("filenames", nargs="*", help="Upload filenames in processing order")
    normalize.add_argument("--upload-id", default=None, help="Batch id recorded in metadata")
    normalize.add_argument("--max-dimension", type=int, default=2048)
    normalize.add_argument("--min-dimension", type=int, default=512)
    normalize.add_argument("--quality", type=int, default=90)

    validate = sub.add_parser("validate", help="Validate a single image file")
    validate.add_argument("image", help="Path to input image file")

    args = p.parse_args(argv)
    setup_logging()

    if args.command == "validate":
        if not os.path.isfile(args.image):
            print(f"error: not a file: {args.image}", file=sys.stderr)
            return 2
        result = validate_file(args.image)
        exit_code = 0 if result.get("valid") else 1
    else:
        catalog = StageCatalog(Path(args.storage_root))
        catalog.ensure_layout()
        config = NormalizerConfig(
            target_max_dimension=args.max_dimension,
            min_acceptable_dimension=args.min_dimension,
            output_quality=args.quality,
        )
        batch = run_normalization_batch(
            catalog,
            args.filenames or None,
            upload_id=args.upload_id,
            config=config,
        )
        result = normalization_summary(batch, args.upload_id)
        exit_code = 0 if batch.failed == 0 else 1

    text = dumps_json(result)
    if args.json_out:
        with open(args.json_out, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"wrote {args.json_out}")
    else:
        print(text)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
