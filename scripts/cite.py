#!/usr/bin/env python3
"""Tiny CLI to open the Zotero picker from a shell or editor task and print the citation.

Examples:
    python scripts/cite.py --format pandoc --brackets
    python scripts/cite.py -f latex --command textcite
    python scripts/cite.py -f formatted-bibliography --csl-style apa
    python scripts/cite.py --import-notes --out-dir notes/
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List

from zotero_connector import CitationFormat, CitationProtocolClient
from zotero_connector.export import ExportContext, export_to_markdown
from zotero_connector.formats import FORMAT_NAMES
from zotero_connector.settings import load_settings


async def _run(args: argparse.Namespace) -> int:
    settings = load_settings(args.settings)
    client = CitationProtocolClient(
        timeout=settings.request_timeout,
        liveness_ttl=settings.liveness_ttl,
        picker_timeout=settings.picker_timeout,
    )
    if args.import_notes:
        ctx = ExportContext(client, settings.db, None, args.out_dir or settings.note_import_folder)
        for path in await export_to_markdown(ctx):
            print(f"Wrote {path}")
        return 0
    fmt = CitationFormat(
        format=args.format,
        csl_style=args.csl_style,
        brackets=args.brackets,
        command=args.command,
        template=args.template,
    )
    res = await client.retrieve_formatted_citation(fmt, settings.db)
    if res is None:
        for msg in getattr(client.host, "notices", []):
            print(msg, file=sys.stderr)
        return 1
    print(res)
    return 0


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Cite from Zotero via Better BibTeX's cite-as-you-write picker")
    p.add_argument("-f", "--format", choices=FORMAT_NAMES, default="pandoc", help="Citation format")
    p.add_argument("--csl-style", default=None, help="CSL style id for formatted citations/bibliographies")
    p.add_argument("--brackets", action="store_true", help="Wrap pandoc citations in brackets")
    p.add_argument("--command", default=None, help="LaTeX/BibLaTeX cite command (cite / autocite by default)")
    p.add_argument("--template", default=None, help="Template body for --format template, e.g. '[[{{citekey}}]]'")
    p.add_argument("--import-notes", action="store_true", help="Import picked items as Markdown notes instead")
    p.add_argument("--out-dir", default=None, help="Folder for imported notes (defaults to settings)")
    p.add_argument("--settings", default=None, help="YAML settings file")
    args = p.parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
