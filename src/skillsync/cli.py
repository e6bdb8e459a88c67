from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import replace
from typing import Any

from ._version import __version__
from .agents import detect_installed_agents
from .client import SORT_CHOICES, SkillsCatalogClient
from .config import Config, apply_env, config_path, load_config, save_config
from .errors import CatalogHTTPError, SkillsyncError
from .installer import MODE_COPY, MODE_SYMLINK
from .manager import InstallReport, SkillManager
from .paths import SCOPE_GLOBAL, SCOPE_PROJECT
from .repository import GitSkillSource


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _runtime_config(args: argparse.Namespace) -> Config:
    # Config file < env < CLI flags.
    cfg = apply_env(load_config())
    catalog_url = getattr(args, "catalog_url", None) or cfg.catalog_url
    timeout_s = getattr(args, "timeout_s", None) or cfg.timeout_s
    return replace(cfg, catalog_url=catalog_url, timeout_s=float(timeout_s))


def _scope_from_args(args: argparse.Namespace, cfg: Config) -> str:
    if getattr(args, "global_scope", False):
        return SCOPE_GLOBAL
    if getattr(args, "project_scope", False):
        return SCOPE_PROJECT
    return SCOPE_PROJECT if cfg.default_scope == SCOPE_PROJECT else SCOPE_GLOBAL


def _mode_from_args(args: argparse.Namespace, cfg: Config) -> str:
    if getattr(args, "copy", False):
        return MODE_COPY
    return MODE_COPY if cfg.default_mode == MODE_COPY else MODE_SYMLINK


def _make_manager(cfg: Config) -> SkillManager:
    return SkillManager(source=GitSkillSource(include_internal=cfg.include_internal))


def _short_hash(value: str | None) -> str:
    return value[:12] if value else "-"


def _format_error(e: SkillsyncError) -> str:
    if isinstance(e, CatalogHTTPError):
        body = e.body.strip()
        if len(body) > 200:
            body = body[:200] + "..."
        return f"catalog request failed with HTTP {e.status_code}: {body}"
    return str(e)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="skillsync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Install agent skills once and link them into every coding agent.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              SKILLSYNC_HOME, SKILLSYNC_CONFIG_PATH, SKILLSYNC_CATALOG_URL,
              SKILLSYNC_TIMEOUT_S, INSTALL_INTERNAL_SKILLS
            """
        ),
    )
    p.add_argument("--version", action="version", version=f"skillsync {__version__}")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")

    def _add_scope_flags(parser: argparse.ArgumentParser) -> None:
        group = parser.add_mutually_exclusive_group()
        group.add_argument("-g", "--global", dest="global_scope", action="store_true", help="Use the home directory scope")
        group.add_argument("-p", "--project", dest="project_scope", action="store_true", help="Use the current directory scope")

    sub = p.add_subparsers(dest="cmd", required=True)

    # catalog
    find = sub.add_parser("find", aliases=["search"], help="Search the skills catalog (popular skills without a query)")
    find.add_argument("query", nargs="?", default=None, help="Search query (at least 2 characters)")
    find.add_argument("--limit", type=int, default=50)
    find.add_argument("--sort", choices=SORT_CHOICES, default="all-time", help="Ordering for popular skills")
    find.add_argument("--catalog-url", help="Catalog base URL")
    find.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    find.add_argument("--json", action="store_true", help="Output JSON")

    # install
    add = sub.add_parser("add", aliases=["install", "i"], help="Install skills from a git repository or local folder")
    add.add_argument("source", help="owner/repo, owner/repo@skill, a git URL or a local path")
    add.add_argument("-a", "--agent", action="append", default=[], help="Target agent (repeatable; default: detected)")
    add.add_argument("-s", "--skill", action="append", default=[], help="Skill name to install (repeatable)")
    add.add_argument("--all", action="store_true", help="Install every skill found in the source")
    add.add_argument("--copy", action="store_true", help="Copy into each agent instead of linking to one shared copy")
    _add_scope_flags(add)
    add.add_argument("--json", action="store_true", help="Output JSON")

    ls = sub.add_parser("list", aliases=["ls"], help="List installed skills and the agents that have them")
    _add_scope_flags(ls)
    ls.add_argument("-a", "--agent", action="append", default=[], help="Only check these agents (repeatable)")
    ls.add_argument("--check-updates", action="store_true", help="Compare each skill with its source")
    ls.add_argument("--json", action="store_true", help="Output JSON")

    check = sub.add_parser("check", help="Check installed skills for content changes at their source")
    check.add_argument("names", nargs="*", help="Skill names (default: every skill in the lock file)")
    _add_scope_flags(check)
    check.add_argument("--json", action="store_true", help="Output JSON")

    update = sub.add_parser("update", help="Reinstall skills whose source content changed")
    update.add_argument("names", nargs="*", help="Skill names (default: every skill in the lock file)")
    update.add_argument("--copy", action="store_true", help="Reinstall as copies")
    _add_scope_flags(update)
    update.add_argument("--json", action="store_true", help="Output JSON")

    remove = sub.add_parser("remove", aliases=["rm", "uninstall"], help="Remove a skill")
    remove.add_argument("name", help="Skill name")
    remove.add_argument("-a", "--agent", action="append", default=[], help="Only remove from these agents (repeatable)")
    _add_scope_flags(remove)
    remove.add_argument("--json", action="store_true", help="Output JSON")

    agents = sub.add_parser("agents", help="List known agents and whether they are installed")
    agents.add_argument("--detected", action="store_true", help="Only show detected agents")
    agents.add_argument("--json", action="store_true", help="Output JSON")

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config")
    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--catalog-url")
    cfg_set.add_argument("--timeout-s", type=float)
    cfg_set.add_argument("--default-mode", choices=(MODE_SYMLINK, MODE_COPY))
    cfg_set.add_argument("--default-scope", choices=(SCOPE_GLOBAL, SCOPE_PROJECT))
    cfg_set.add_argument("--include-internal", choices=("true", "false"))

    return p


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0
    cfg = load_config()
    if args.subcmd == "show":
        _print_json(
            {
                "catalog_url": cfg.catalog_url,
                "timeout_s": cfg.timeout_s,
                "default_mode": cfg.default_mode,
                "default_scope": cfg.default_scope,
                "include_internal": cfg.include_internal,
            }
        )
        return 0
    if args.subcmd == "set":
        new_cfg = Config(
            catalog_url=args.catalog_url or cfg.catalog_url,
            timeout_s=args.timeout_s if args.timeout_s is not None else cfg.timeout_s,
            default_mode=args.default_mode or cfg.default_mode,
            default_scope=args.default_scope or cfg.default_scope,
            include_internal=cfg.include_internal if args.include_internal is None else args.include_internal == "true",
        )
        path = save_config(new_cfg)
        print(f"saved: {path}")
        return 0
    raise AssertionError("unreachable")


def cmd_find(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    with SkillsCatalogClient(base_url=cfg.catalog_url, timeout_s=cfg.timeout_s) as client:
        if args.query:
            skills = client.search(args.query, limit=args.limit)
        else:
            skills = client.popular(limit=args.limit, sort=args.sort)

    if args.json:
        _print_json(
            [
                {
                    "id": s.id,
                    "name": s.name,
                    "installs": s.installs,
                    "source": s.top_source,
                    "repository_url": s.repository_url,
                    "url": s.url,
                    "install": s.install_command,
                }
                for s in skills
            ]
        )
        return 0

    if not skills:
        print("no skills found")
        return 0
    rows = [["NAME", "INSTALLS", "SOURCE", "INSTALL"]]
    for s in skills:
        rows.append([s.name, str(s.installs), s.top_source or "-", s.install_command])
    _print_table(rows)
    return 0


def _report_payload(report: InstallReport) -> dict[str, Any]:
    return {
        "source": report.source,
        "scope": report.scope,
        "mode": report.mode,
        "success_count": report.success_count,
        "failure_count": report.failure_count,
        "skills": [
            {
                "name": outcome.name,
                "results": [
                    {
                        "agent": r.agent,
                        "success": r.result.success,
                        "path": str(r.result.path) if r.result.path else None,
                        "canonical_path": str(r.result.canonical_path) if r.result.canonical_path else None,
                        "mode": r.result.mode,
                        "symlink_failed": r.result.symlink_failed,
                        "error": r.result.error,
                    }
                    for r in outcome.results
                ],
            }
            for outcome in report.skills
        ],
    }


def _print_report(report: InstallReport) -> None:
    rows = [["SKILL", "AGENT", "STATUS", "PATH"]]
    for outcome in report.skills:
        for r in outcome.results:
            if not r.result.success:
                status = "failed"
            elif r.result.symlink_failed:
                status = "copied (symlink failed)"
            elif r.result.mode == MODE_COPY:
                status = "copied"
            else:
                status = "linked"
            rows.append([outcome.name, r.agent, status, str(r.result.path or "-")])
    _print_table(rows)
    total = report.success_count + report.failure_count
    print(f"installed to {report.success_count}/{total} target(s) ({report.scope}, {report.mode})")
    for skill_name, agent_name, error in report.failures():
        print(f"failed: {skill_name} -> {agent_name}: {error}")


def cmd_add(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    manager = _make_manager(cfg)
    report = manager.install(
        args.source,
        agent_names=args.agent or None,
        scope=_scope_from_args(args, cfg),  # type: ignore[arg-type]
        mode=_mode_from_args(args, cfg),  # type: ignore[arg-type]
        skill_names=args.skill or None,
        all_skills=args.all,
    )
    if args.json:
        _print_json(_report_payload(report))
    else:
        _print_report(report)
    return 1 if report.all_failed else 0


def cmd_list(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    scope = None
    if args.global_scope:
        scope = SCOPE_GLOBAL
    elif args.project_scope:
        scope = SCOPE_PROJECT
    manager = _make_manager(cfg)
    skills = manager.list_installed(scope=scope, agent_filter=args.agent or None, check_updates=args.check_updates)

    if args.json:
        _print_json(
            [
                {
                    "name": s.name,
                    "description": s.description,
                    "path": str(s.path),
                    "scope": s.scope,
                    "agents": list(s.agents),
                    "source": s.source,
                    "source_url": s.source_url,
                    "installed_at": s.installed_at,
                    "updated_at": s.updated_at,
                    "has_update": s.has_update,
                }
                for s in skills
            ]
        )
        return 0

    if not skills:
        print("no skills installed")
        return 0
    header = ["NAME", "SCOPE", "AGENTS", "SOURCE"]
    if args.check_updates:
        header.append("UPDATE")
    rows = [header]
    for s in skills:
        row = [s.name, s.scope, ", ".join(s.agents) or "-", s.source or "-"]
        if args.check_updates:
            row.append("available" if s.has_update else "-")
        rows.append(row)
    _print_table(rows)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    scope = SCOPE_GLOBAL if args.global_scope else SCOPE_PROJECT if args.project_scope else None
    manager = _make_manager(cfg)
    statuses = manager.check_updates(args.names or None, scope=scope)  # type: ignore[arg-type]

    if args.json:
        _print_json(
            [
                {
                    "name": s.skill_name,
                    "has_update": s.has_update,
                    "update_type": s.update_type,
                    "local_hash": s.local_hash,
                    "remote_hash": s.remote_hash,
                }
                for s in statuses
            ]
        )
        return 0

    if not statuses:
        print("no tracked skills to check")
        return 0
    rows = [["NAME", "STATUS", "LOCAL", "REMOTE"]]
    for s in statuses:
        if s.has_update:
            label = "update available"
        elif s.local_hash and s.remote_hash:
            label = "up to date"
        else:
            label = "unknown"
        rows.append([s.skill_name, label, _short_hash(s.local_hash), _short_hash(s.remote_hash)])
    _print_table(rows)
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    manager = _make_manager(cfg)
    reports = manager.update(
        args.names or None,
        scope=_scope_from_args(args, cfg),  # type: ignore[arg-type]
        mode=_mode_from_args(args, cfg),  # type: ignore[arg-type]
    )
    if args.json:
        _print_json([_report_payload(r) for r in reports])
        return 0
    if not reports:
        print("all skills are up to date")
        return 0
    for report in reports:
        _print_report(report)
    return 1 if any(r.all_failed for r in reports) else 0


def cmd_remove(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    manager = _make_manager(cfg)
    result = manager.remove(args.name, scope=_scope_from_args(args, cfg), agent_names=args.agent or None)  # type: ignore[arg-type]
    payload = {
        "name": result.name,
        "scope": result.scope,
        "removed_from": list(result.removed_from),
        "canonical_removed": result.canonical_removed,
        "lock_entry_removed": result.lock_entry_removed,
    }
    if args.json:
        _print_json(payload)
        return 0
    if not result.removed_from and not result.canonical_removed and not result.lock_entry_removed:
        print(f"{result.name}: nothing to remove")
        return 0
    for agent in result.removed_from:
        print(f"removed: {result.name} from {agent}")
    if result.canonical_removed:
        print(f"removed: canonical copy of {result.name}")
    if result.lock_entry_removed:
        print(f"removed: lock entry for {result.name}")
    return 0


def cmd_agents(args: argparse.Namespace) -> int:
    manager = _make_manager(_runtime_config(args))
    detected = {a.name for a in detect_installed_agents(manager.agents)}
    agents = [a for a in manager.agents.values() if not args.detected or a.name in detected]

    if args.json:
        _print_json(
            [
                {
                    "name": a.name,
                    "display_name": a.display_name,
                    "detected": a.name in detected,
                    "project_dir": a.skills_dir,
                    "global_dir": str(a.global_dir()) if a.supports_global else None,
                }
                for a in agents
            ]
        )
        return 0

    rows = [["NAME", "DISPLAY NAME", "DETECTED", "GLOBAL DIR"]]
    for a in agents:
        rows.append([a.name, a.display_name, "yes" if a.name in detected else "no", str(a.global_dir() or "-")])
    _print_table(rows)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd in ("find", "search"):
            return cmd_find(args)
        if args.cmd in ("add", "install", "i"):
            return cmd_add(args)
        if args.cmd in ("list", "ls"):
            return cmd_list(args)
        if args.cmd == "check":
            return cmd_check(args)
        if args.cmd == "update":
            return cmd_update(args)
        if args.cmd in ("remove", "rm", "uninstall"):
            return cmd_remove(args)
        if args.cmd == "agents":
            return cmd_agents(args)
        raise AssertionError("unreachable")
    except SkillsyncError as e:
        print(f"error: {_format_error(e)}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
