"""Command dispatcher for factoryjump.

Routes --command values to extraction, indexing, and resolution.
Called from __main__.py. In sidecar mode a sessions dict is passed in and
kept across requests so the in-memory index survives between calls.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from .config import load_config


def dispatch(command: str, project: str, args: dict, sessions: dict | None = None) -> dict:
    """Dispatch a command to the appropriate operation.

    Args:
        command: Command name
        project: Workspace root path
        args: Extra arguments dict (also carries config overrides)
        sessions: Optional project -> IndexSession registry

    Returns:
        Dict result, or {"error": ..., "message": ...} for unknown commands
    """
    if command == "extract":
        from .extractors import FactoryExtractor
        config = load_config(args)
        path = _resolve_path(project, args.get("file", project))
        extractor = FactoryExtractor(block_mode=config.block_mode)
        result = extractor.parse_text(
            path.read_text(encoding="utf-8", errors="replace"), args.get("file", str(path)),
        )
        return result.to_dict()

    elif command == "index":
        session = _session_for(project, args, sessions)
        asyncio.run(session.initialize(force=bool(args.get("force", False))))
        factories = sorted(
            session.cache.all_factories(), key=lambda f: f.name,
        )
        return {
            "project": project,
            "stats": session.cache.get_stats().to_dict(),
            "factories": [f.to_dict() for f in factories],
        }

    elif command == "resolve":
        session = _session_for(project, args, sessions)
        asyncio.run(session.initialize())
        if "text" in args:
            text = args["text"]
        else:
            text = _resolve_path(project, args.get("file", "")).read_text(
                encoding="utf-8", errors="replace",
            )
        references = session.resolve(text)
        return {
            "references": [r.to_dict() for r in references],
            "total_references": len(references),
        }

    elif command == "changed":
        session = _session_for(project, args, sessions)
        asyncio.run(session.initialize())
        reindexed = asyncio.run(
            session.handle_file_change(args.get("file", ""), args.get("kind", "changed"))
        )
        return {"file": args.get("file", ""), "reindexed": reindexed,
                "stats": session.cache.get_stats().to_dict()}

    elif command == "poll":
        session = _session_for(project, args, sessions)
        asyncio.run(session.initialize())
        if not session.source.watching:
            session.watch()
        changes = asyncio.run(session.source.poll_changes())
        return {
            "changes": [{"file": f, "kind": k.value} for f, k in changes],
            "stats": session.cache.get_stats().to_dict(),
        }

    elif command == "stats":
        session = _session_for(project, args, sessions)
        expired = session.cache.cleanup_expired_entries()
        return {**session.cache.get_stats().to_dict(), "expired_removed": expired}

    else:
        return {"error": "UnknownCommand", "message": f"Unknown command: {command}"}


def _resolve_path(project: str, file: str) -> Path:
    path = Path(file)
    if not path.is_absolute():
        path = Path(project) / path
    return path


def _session_for(project: str, args: dict, sessions: dict | None):
    from .session import IndexSession
    from .workspace import LocalFileSource

    config = load_config(args)
    if sessions is not None and project in sessions:
        session = sessions[project]
        if session.config != config:
            asyncio.run(session.apply_config(config))
        return session

    source = LocalFileSource(project, watch_patterns=config.factory_paths)
    session = IndexSession(config, source)
    if sessions is not None:
        sessions[project] = session
    return session
