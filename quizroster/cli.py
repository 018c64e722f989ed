from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib import error, request

from quizroster.security import ROLES, SESSION_COOKIE_NAME, create_session_token

_DEFAULT_BASE_URL = "http://127.0.0.1:8000"


def _api_request(
    *,
    base_url: str,
    path: str,
    method: str = "GET",
    json_body: Optional[Dict[str, Any]] = None,
    session_token: Optional[str] = None,
) -> Any:
    url = base_url.rstrip("/") + path
    headers: Dict[str, str] = {"Accept": "application/json"}
    data: Optional[bytes] = None

    if json_body is not None:
        data = json.dumps(json_body).encode("utf-8")
        headers["Content-Type"] = "application/json"

    if session_token:
        headers["Cookie"] = f"{SESSION_COOKIE_NAME}={session_token}"

    req = request.Request(url=url, method=method.upper(), data=data, headers=headers)
    try:
        with request.urlopen(req, timeout=15) as response:
            body = response.read().decode("utf-8")
            return json.loads(body) if body else {}
    except error.HTTPError as exc:
        payload = exc.read().decode("utf-8")
        detail = payload
        try:
            parsed = json.loads(payload)
            if isinstance(parsed, dict) and "detail" in parsed:
                detail = str(parsed["detail"])
                retry_after = exc.headers.get("Retry-After") if exc.headers else None
                if retry_after:
                    detail = f"{detail} (retry after {retry_after}s)"
        except json.JSONDecodeError:
            pass
        raise RuntimeError(f"HTTP {exc.code}: {detail}") from exc


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _session_token(args: argparse.Namespace) -> str:
    token = args.session_token or os.getenv("QUIZROSTER_SESSION_TOKEN", "")
    if not token:
        raise RuntimeError("A session token is required (--session-token or QUIZROSTER_SESSION_TOKEN)")
    return token


def _collect_emails(args: argparse.Namespace) -> List[str]:
    emails: List[str] = list(args.email or [])
    if args.emails_file:
        for line in Path(args.emails_file).read_text().splitlines():
            for item in line.replace(";", ",").split(","):
                if item.strip():
                    emails.append(item.strip())
    if not emails:
        raise RuntimeError("Provide at least one --email or an --emails-file")
    return emails


def _add_client_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--base-url", default=os.getenv("QUIZROSTER_BASE_URL", _DEFAULT_BASE_URL))
    parser.add_argument("--session-token")


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from quizroster.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "quizroster.main:app",
        host=args.host or settings.server_host,
        port=args.port or settings.server_port,
        reload=args.reload,
    )
    return 0


def cmd_issue_session_token(args: argparse.Namespace) -> int:
    from quizroster.config import get_settings

    settings = get_settings()
    token = create_session_token(
        args.user_id,
        args.role,
        settings.auth_secret_key,
        ttl_seconds=args.ttl or settings.session_ttl_seconds,
    )
    print(token)
    return 0


def cmd_add_students(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.base_url,
        path=f"/groups/{args.group_id}/add-students",
        method="POST",
        json_body={"emails": _collect_emails(args)},
        session_token=_session_token(args),
    )
    _print_json(result)
    summary = result.get("summary", {}) if isinstance(result, dict) else {}
    return 1 if summary.get("failed") else 0


def cmd_qr_session_show(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.base_url,
        path=f"/groups/{args.group_id}/qr-session",
        session_token=_session_token(args),
    )
    _print_json(result)
    return 0


def cmd_qr_session_open(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.base_url,
        path=f"/groups/{args.group_id}/qr-session",
        method="POST",
        session_token=_session_token(args),
    )
    _print_json(result)
    return 0


def cmd_qr_session_revoke(args: argparse.Namespace) -> int:
    _api_request(
        base_url=args.base_url,
        path=f"/groups/{args.group_id}/qr-session",
        method="DELETE",
        json_body={"sessionId": args.session_id},
        session_token=_session_token(args),
    )
    print(f"revoked {args.session_id}")
    return 0


def cmd_join(args: argparse.Namespace) -> int:
    result = _api_request(
        base_url=args.base_url,
        path="/join-with-token",
        method="POST",
        json_body={"token": args.token},
        session_token=_session_token(args),
    )
    _print_json(result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quizroster", description="QuizRoster enrollment CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    issue_token = sub.add_parser(
        "issue-session-token", help="Sign a session token for a user (development helper)"
    )
    issue_token.add_argument("--user-id", required=True)
    issue_token.add_argument("--role", required=True, choices=sorted(ROLES))
    issue_token.add_argument("--ttl", type=int)
    issue_token.set_defaults(func=cmd_issue_session_token)

    add_students = sub.add_parser("add-students", help="Bulk add or invite students to a group")
    _add_client_args(add_students)
    add_students.add_argument("--group-id", required=True)
    add_students.add_argument("--email", action="append")
    add_students.add_argument("--emails-file")
    add_students.set_defaults(func=cmd_add_students)

    qr_session = sub.add_parser("qr-session", help="Manage a group's QR join session")
    qr_sub = qr_session.add_subparsers(dest="qr_command", required=True)

    qr_show = qr_sub.add_parser("show", help="Show the active session, if any")
    _add_client_args(qr_show)
    qr_show.add_argument("--group-id", required=True)
    qr_show.set_defaults(func=cmd_qr_session_show)

    qr_open = qr_sub.add_parser("open", help="Return the active session or mint one")
    _add_client_args(qr_open)
    qr_open.add_argument("--group-id", required=True)
    qr_open.set_defaults(func=cmd_qr_session_open)

    qr_revoke = qr_sub.add_parser("revoke", help="Revoke a session")
    _add_client_args(qr_revoke)
    qr_revoke.add_argument("--group-id", required=True)
    qr_revoke.add_argument("--session-id", required=True)
    qr_revoke.set_defaults(func=cmd_qr_session_revoke)

    join = sub.add_parser("join", help="Join a group with a QR token")
    _add_client_args(join)
    join.add_argument("--token", required=True)
    join.set_defaults(func=cmd_join)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        exit_code = args.func(args)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
