#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import mimetypes
import os
from pathlib import Path

from govflow.importer import AIDisabledError, ImportFailed, import_document, import_summary
from govflow.storage import build_data_service
from govflow.users import find_by_email


def _env(name: str) -> str | None:
    value = os.getenv(name)
    return value.strip() if value else None


def main() -> None:
    parser = argparse.ArgumentParser(description="Import an invoice batch (text, CSV, NFe XML or PDF) into GovFlow.")
    parser.add_argument("path", help="File to import")
    parser.add_argument("--data-dir", default=_env("GOVFLOW_DATA_DIR") or "./data", help="Local data directory")
    parser.add_argument("--user", default=None, help="E-mail of the user recorded in the invoice history")
    parser.add_argument("--firestore", action="store_true", help="Mirror writes to Firestore")
    parser.add_argument("--dry-run", action="store_true", help="Reconcile without saving")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    path = Path(args.path)
    if not path.exists():
        raise SystemExit(f"File not found: {path}")

    service = build_data_service(args.data_dir, firestore_enabled=args.firestore)
    service.seed()

    actor = None
    if args.user:
        actor = find_by_email(service.list_users(), args.user)
        if actor is None:
            raise SystemExit(f"Unknown user: {args.user}")

    content_type, _ = mimetypes.guess_type(path.name)
    try:
        result = import_document(
            service,
            path.read_bytes(),
            actor,
            file_name=path.name,
            content_type=content_type,
            dry_run=args.dry_run,
        )
    except ImportFailed as exc:
        raise SystemExit(f"Import failed ({exc.log.error_type}): {exc}")
    except AIDisabledError as exc:
        raise SystemExit(str(exc))

    output = import_summary(result)
    output["dry_run"] = args.dry_run
    print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
