#!/usr/bin/env python3
"""tikzcd-session CLI - drive a running session backend from the shell."""

import argparse
import json
import os
import sys

import httpx

API_BASE = os.environ.get("TIKZCD_API_BASE", "http://127.0.0.1:8765/api")


def _json_out(data):
    print(json.dumps(data))
    sys.exit(0)


def _api_request(method, endpoint, data=None):
    """Make a request to the session backend."""
    url = f"{API_BASE}{endpoint}"
    try:
        with httpx.Client(timeout=30.0) as client:
            response = client.request(method, url, json=data)
    except httpx.HTTPError as e:
        _json_out({"status": "error", "error": f"Connection failed: {e}. Is the backend running?"})

    if response.status_code >= 400:
        try:
            detail = response.json().get("detail", "Unknown error")
        except ValueError:
            detail = response.text
        _json_out({"status": "error", "error": f"API error ({response.status_code}): {detail}"})
    return response.json()


# ── Session ──────────────────────────────────────────────────────────────────

def cmd_state(args):
    _json_out(_api_request("GET", "/session"))


def cmd_load(args):
    _json_out(_api_request("POST", "/session", data={"fragment": args.fragment}))


def cmd_apply(args):
    with open(args.file_path) as f:
        diagram = json.load(f)
    _json_out(_api_request("PUT", "/diagram", data=diagram))


# ── History ──────────────────────────────────────────────────────────────────

def cmd_undo(args):
    _json_out(_api_request("POST", "/undo"))


def cmd_redo(args):
    _json_out(_api_request("POST", "/redo"))


# ── Tools & edges ────────────────────────────────────────────────────────────

def cmd_tool(args):
    _json_out(_api_request("POST", "/tool", data={"tool": args.tool}))


def cmd_click_edge(args):
    _json_out(_api_request("POST", f"/edges/{args.index}/click"))


def cmd_update_edge(args):
    updates = {}
    if args.value is not None:
        updates["value"] = args.value
    if args.label_position is not None:
        updates["label_position"] = args.label_position
    if args.head is not None:
        updates["head"] = args.head
    if args.tail is not None:
        updates["tail"] = args.tail
    if args.line is not None:
        updates["line"] = args.line
    if args.bend is not None:
        updates["bend"] = args.bend
    if args.shift is not None:
        updates["shift"] = args.shift

    _json_out(_api_request("PATCH", "/selected-edge", data=updates))


def cmd_remove_edge(args):
    _json_out(_api_request("DELETE", "/selected-edge"))


# ── Code & permalink ─────────────────────────────────────────────────────────

def cmd_code(args):
    if args.file_path is None:
        result = _api_request("POST", "/code/open")
        _api_request("POST", "/code/dismiss")
        _json_out({"success": True, "code": result["code"]})

    with open(args.file_path) as f:
        text = f.read()
    _api_request("POST", "/code/open")
    _json_out(_api_request("POST", "/code/close", data={"text": text}))


def cmd_permalink(args):
    _json_out(_api_request("POST", "/permalink"))


def cmd_validate(args):
    _json_out(_api_request("GET", "/diagram/validate"))


def main():
    parser = argparse.ArgumentParser(prog="tikzcd-session", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("state", help="Print the session state").set_defaults(func=cmd_state)

    p = sub.add_parser("load", help="Start a new session from a URL fragment")
    p.add_argument("fragment", nargs="?", default=None)
    p.set_defaults(func=cmd_load)

    p = sub.add_parser("apply", help="Commit a diagram JSON file as a document change")
    p.add_argument("file_path")
    p.set_defaults(func=cmd_apply)

    sub.add_parser("undo").set_defaults(func=cmd_undo)
    sub.add_parser("redo").set_defaults(func=cmd_redo)

    p = sub.add_parser("tool", help="Activate a tool")
    p.add_argument("tool", choices=["pan", "arrow"])
    p.set_defaults(func=cmd_tool)

    p = sub.add_parser("click-edge", help="Toggle selection of an edge")
    p.add_argument("index", type=int)
    p.set_defaults(func=cmd_click_edge)

    p = sub.add_parser("update-edge", help="Change the selected edge")
    p.add_argument("--value")
    p.add_argument("--label-position", choices=["left", "right", "inside"])
    p.add_argument("--head", choices=["default", "none", "twoheads", "harpoon", "harpoonalt"])
    p.add_argument("--tail", choices=["none", "mapsto", "hook", "hookalt", "tail"])
    p.add_argument("--line", choices=["solid", "double", "dashed", "dotted", "none"])
    p.add_argument("--bend", type=int)
    p.add_argument("--shift", type=int)
    p.set_defaults(func=cmd_update_edge)

    sub.add_parser("remove-edge", help="Remove the selected edge").set_defaults(func=cmd_remove_edge)

    p = sub.add_parser("code", help="Print the tikz-cd code, or replace the diagram from a file")
    p.add_argument("file_path", nargs="?", default=None)
    p.set_defaults(func=cmd_code)

    sub.add_parser("permalink", help="Create a permalink").set_defaults(func=cmd_permalink)
    sub.add_parser("validate", help="Check structural consistency").set_defaults(func=cmd_validate)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
