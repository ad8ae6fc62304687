"""CLI entry point: python3 -m factoryjump

Modes:
  --command/--project/--args  Single-shot command
  --sidecar                   Persistent stdin/stdout JSON loop; keeps one
                              in-memory index per project between requests
"""

import argparse
import json
import logging
import sys
import traceback


def main(argv=None):
    parser = argparse.ArgumentParser(description="factoryjump factory index CLI")
    parser.add_argument("--sidecar", action="store_true",
                        help="Run as persistent sidecar (stdin/stdout JSON)")
    parser.add_argument("--command",
                        help="Command to run (extract, index, resolve, changed, poll, stats)")
    parser.add_argument("--project", help="Workspace root path")
    parser.add_argument("--args", default="{}", help="JSON-encoded arguments")
    parser.add_argument("--log-level", default="WARNING", help="Log level for stderr output")
    opts = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, opts.log_level.upper(), logging.WARNING),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if opts.sidecar:
        serve(sys.stdin, sys.stdout)
        return
    if not opts.command or not opts.project:
        parser.error("--command and --project are required (or use --sidecar)")

    try:
        command_args = json.loads(opts.args)
    except json.JSONDecodeError as e:
        _fail("InvalidArgs", f"Failed to parse --args JSON: {e}")

    from .analyze import dispatch
    try:
        result = dispatch(opts.command, opts.project, command_args)
    except Exception as e:
        _fail(type(e).__name__, str(e))
    _emit(sys.stdout, result)


def handle_request(line: str, sessions: dict) -> dict:
    """Turn one JSON request line into its response envelope.

    Failures become ``{"id": ..., "error": {"type", "message"}}``; nothing
    raised by a command escapes, so one bad request never ends the loop.
    """
    from .analyze import dispatch

    try:
        req = json.loads(line)
    except json.JSONDecodeError as e:
        return {"id": None, "error": {"type": "InvalidJSON", "message": str(e)}}
    if not isinstance(req, dict):
        return {"id": None, "error": {"type": "InvalidRequest",
                                      "message": "request must be a JSON object"}}

    req_id = req.get("id")
    try:
        result = dispatch(
            req.get("command", ""), req.get("project", ""), req.get("args") or {},
            sessions=sessions,
        )
    except Exception as e:
        return {"id": req_id, "error": {"type": type(e).__name__, "message": str(e)}}
    return {"id": req_id, "result": result}


def serve(stdin, stdout) -> None:
    """Sidecar loop: announce readiness, then answer one line per request."""
    sessions = {}
    _emit(stdout, {"status": "ready"})
    for line in stdin:
        line = line.strip()
        if line:
            _emit(stdout, handle_request(line, sessions))


def _emit(stream, payload: dict) -> None:
    stream.write(json.dumps(payload) + "\n")
    stream.flush()


def _fail(error_type: str, message: str):
    """Write a structured error to stderr and exit 1."""
    json.dump(
        {"error": error_type, "message": message, "traceback": traceback.format_exc()},
        sys.stderr,
    )
    sys.stderr.write("\n")
    sys.exit(1)


if __name__ == "__main__":
    main()
