"""
Registry merger: many host record files in, one hosts document out.

The rendered document is what ``~/.ssh/config`` includes. It is a pure
function of the record files: same files, same bytes. That is what
keeps repeated syncs from producing commits when nothing changed, so
the header carries the newest record's timestamp rather than the
wall clock.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .errors import RecordParseError
from .models import HostRecord, Registry
from .records import RECORD_SUFFIX, read_record, render_record, write_atomic

logger = logging.getLogger("hostmesh.registry")

HEADER_TEMPLATE = """\
# SSH Hosts File - Auto-generated
# This file contains all hosts registered via hostmesh
# Last updated: {updated}
#
# DO NOT EDIT THIS FILE DIRECTLY
# Add or modify files in .ssh/hosts.d/ instead

"""


def list_record_files(store_dir: Path) -> list[Path]:
    """Record files in ``store_dir``, sorted by file name.

    Sorting makes the duplicate-name tie-break independent of the
    filesystem's directory order.
    """
    if not store_dir.is_dir():
        return []
    return sorted(
        (p for p in store_dir.iterdir() if p.suffix == RECORD_SUFFIX and p.is_file()),
        key=lambda p: p.name,
    )


def merge(record_files: Iterable[Path]) -> Registry:
    """Combine record files into a Registry.

    Files are processed in lexicographic name order. A file that fails
    to parse is skipped and listed in ``Registry.skipped``. When two
    files claim the same canonical name, the later one wins.

    Args:
        record_files: Paths of record files.

    Returns:
        Registry
    """
    registry = Registry()
    for path in sorted(record_files, key=lambda p: p.name):
        try:
            record = read_record(path)
        except RecordParseError as exc:
            logger.warning("Skipping unparseable host record: %s", exc)
            registry.skipped.append(path.name)
            continue

        previous = registry.records.get(record.canonical_name)
        if previous is not None:
            logger.warning(
                "Host %s defined in both %s and %s; using %s",
                record.canonical_name, previous.source, path.name, path.name,
            )
            del registry.records[record.canonical_name]
        registry.records[record.canonical_name] = record

    logger.debug("Merged %d host(s), skipped %d", len(registry), len(registry.skipped))
    return registry


def render(registry: Registry) -> str:
    """Render the canonical hosts document.

    Args:
        registry: Merged registry.

    Returns:
        str: Header followed by every record block, ordered by source file.
    """
    records = registry.ordered()
    parts = [HEADER_TEMPLATE.format(updated=_last_updated(records))]
    parts.extend(render_record(r) for r in records)
    return "".join(parts)


def _last_updated(records: list[HostRecord]) -> str:
    stamps = [r.created_at for r in records if r.created_at is not None]
    if not stamps:
        return "unknown"
    return max(stamps, key=lambda ts: ts.timestamp()).isoformat()


def load_registry(store_dir: Path) -> Registry:
    """Merge every record file currently in ``store_dir``."""
    return merge(list_record_files(store_dir))


def rebuild(store_dir: Path, hosts_file: Path) -> tuple[Registry, bool]:
    """Regenerate the hosts document from the record directory.

    The document is only rewritten when its content changes.

    Args:
        store_dir: The ``hosts.d`` directory.
        hosts_file: Destination of the rendered document.

    Returns:
        (registry, changed)
    """
    registry = load_registry(store_dir)
    text = render(registry)

    current = hosts_file.read_text(encoding="utf-8") if hosts_file.exists() else None
    changed = current != text
    if changed:
        write_atomic(hosts_file, text, mode=0o600)
        logger.info("Combined %d hosts into %s", len(registry), hosts_file)
    else:
        logger.info("Hosts file already up to date (%d hosts)", len(registry))
    return registry, changed
