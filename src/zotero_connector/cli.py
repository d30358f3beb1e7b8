import argparse

from zotero_connector import get_settings, logger, mcp, reset_state
from zotero_connector.settings import load_settings


def main():
    parser = argparse.ArgumentParser(description="Zotero connector (Better BibTeX bridge) MCP server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="Transport to use",
    )
    parser.add_argument(
        "--settings",
        default=None,
        help="YAML settings file (default: $ZOTERO_CONNECTOR_SETTINGS)",
    )
    parser.add_argument(
        "--no-auto-import",
        action="store_true",
        help="Do not listen for pushed citations",
    )
    args = parser.parse_args()

    settings = load_settings(args.settings)
    if args.no_auto_import:
        settings.auto_import = False
    reset_state(settings)

    # Log a concise config summary at startup
    s = get_settings()
    logger.info(
        f"startup: database={s.database} autoImport={s.auto_import} "
        f"updateChannel={s.update_channel_url} notes={s.note_import_folder or '.'}"
    )

    mcp.run(args.transport)


if __name__ == "__main__":
    main()
