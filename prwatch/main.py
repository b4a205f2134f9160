"""prwatch entry point.

Subcommands:
  run           refresh loop (Ctrl+C to stop)
  once          one forced refresh, then print the live view
  stats         refresh statistics and print overview, user and repository reports
  check         validate config and print open PR counts per repository
  configure     save the GitHub token and refresh interval
  update-repos  add repositories of an organization by pattern / drop archived ones

Exit codes: 0 ok, 1 error, 2 setup required (no token).
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from prwatch.adapters import GitHubAdapter, GitPlatformError
from prwatch.config import AppConfig, UserSettings, load_config, mask_token, save_user_config, user_config_path
from prwatch.logging import PrWatchLogging
from prwatch.services.dashboard import AppStatus, Dashboard
from prwatch.services.metrics import TimeRange
from prwatch.services.pr_view import PRViewFilter, apply_view
from prwatch.services.repo_catalog import (
    add_repositories_by_pattern,
    load_repository_list,
    remove_archived_repositories,
    save_repository_list,
)

LOG = logging.getLogger("prwatch.main")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SETUP_REQUIRED = 2

SUBCOMMANDS = ("run", "once", "stats", "check", "configure", "update-repos")

SETUP_HINT = "No GitHub token configured. Run `prwatch configure --token <token>` or set GITHUB_TOKEN."


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI; the subcommand defaults to run."""
    argv = list(argv if argv is not None else sys.argv[1:])
    if not argv or argv[0] not in SUBCOMMANDS + ("-h", "--help"):
        argv = ["run", *argv]

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to YAML config file",
    )

    parser = argparse.ArgumentParser(prog="prwatch", description="GitHub pull request dashboard engine")
    sub = parser.add_subparsers(dest="subcommand", required=True)
    sub.add_parser("run", parents=[common], help="Run the refresh loop")

    once = sub.add_parser("once", parents=[common], help="Forced refresh, then print the live view")
    once.add_argument("--status", choices=["open", "draft", "all"], default="open")
    once.add_argument("--unassigned", action="store_true", help="Only PRs without assignees")
    once.add_argument("--search", default="", help="Filter by number, title, author, repo or branch")
    once.add_argument("--sort", choices=["date", "title", "repo"], default="date")

    stats = sub.add_parser("stats", parents=[common], help="Print team statistics")
    stats.add_argument("--range", dest="time_range", choices=[t.value for t in TimeRange], default="30d")

    sub.add_parser("check", parents=[common], help="Validate config and token access")

    configure = sub.add_parser("configure", parents=[common], help="Save user settings")
    configure.add_argument("--token", required=True, help="GitHub personal access token")
    configure.add_argument("--refresh-interval", type=int, default=None, help="Seconds (10-600)")

    update = sub.add_parser("update-repos", parents=[common], help="Maintain the repository list")
    update.add_argument("--org", help="Organization to search")
    update.add_argument("--pattern", help="Repository name pattern (* and ? wildcards)")
    update.add_argument("--replace", action="store_true", help="Replace the list instead of adding")
    update.add_argument("--color", default=None, help="Background color for new repositories")
    update.add_argument("--refresh-interval", type=int, default=None, help="Interval for new repositories")
    update.add_argument("--remove-archived", action="store_true", help="Drop archived repositories")

    return parser.parse_args(argv)


def _resolve_config_path(config_path: Path) -> Path:
    if not config_path.is_file() and config_path == Path("config.yaml"):
        if Path("config.example.yaml").is_file():
            logging.basicConfig(level=logging.INFO)
            LOG.warning("config.yaml not found, using config.example.yaml")
            return Path("config.example.yaml")
    return config_path


def _print_pull_requests(dashboard: Dashboard, view: PRViewFilter) -> None:
    repos = dashboard.repositories.repos
    names = {r.url: r.name for r in repos}
    for pr in apply_view(dashboard.pull_requests, repos, view):
        assignees = ", ".join(pr.assignee_logins) or "-"
        draft = " [draft]" if pr.draft else ""
        print(f"{names.get(pr.repository_url, '?')}#{pr.number}{draft} {pr.title} (@{pr.user.login}; assigned: {assignees})")


async def _run_loop(dashboard: Dashboard) -> int:
    await dashboard.start()
    if dashboard.status == AppStatus.SETUP_REQUIRED:
        print(SETUP_HINT)
        return EXIT_SETUP_REQUIRED
    loop = dashboard.start_loop()
    try:
        await loop.wait()
    finally:
        await dashboard.stop_loop()
    return EXIT_OK


async def _once(dashboard: Dashboard, args: argparse.Namespace) -> int:
    status = await dashboard.start()
    if status == AppStatus.SETUP_REQUIRED:
        print(SETUP_HINT)
        return EXIT_SETUP_REQUIRED
    view = PRViewFilter(
        status=args.status,
        unassigned_only=args.unassigned,
        search=args.search,
        sort_by=args.sort,
        selected_repos=frozenset(dashboard.selected_repos()),
    )
    _print_pull_requests(dashboard, view)
    if status == AppStatus.ERROR:
        print(f"Error: {dashboard.error}")
        remediation = getattr(dashboard.error, "remediation", None)
        if remediation:
            print(remediation)
        return EXIT_ERROR
    return EXIT_OK


async def _stats(dashboard: Dashboard, time_range: str) -> int:
    if dashboard.status == AppStatus.SETUP_REQUIRED:
        print(SETUP_HINT)
        return EXIT_SETUP_REQUIRED
    result = await dashboard.refresh_statistics()
    overview = dashboard.overview(time_range)
    print(f"Statistics ({TimeRange.parse(time_range).label})")
    for name, value in overview.model_dump().items():
        print(f"  {name}: {value if value is not None else '-'}")
    print("Users:")
    for user in dashboard.user_stats(time_range):
        print(
            f"  {user.username}: created={user.prs_created} reviews={user.reviews_given} "
            f"approvals={user.approvals_given} assigned={user.prs_assigned} oldest_days={user.oldest_pr_days}"
        )
    print("Repositories:")
    for repo in dashboard.repo_stats(time_range):
        print(
            f"  {repo.full_name}: total={repo.total_prs} open={repo.open_prs} merged={repo.merged_prs} "
            f"closed={repo.closed_prs} draft={repo.draft_prs}"
        )
    return EXIT_ERROR if result.errors else EXIT_OK


def _check(config: AppConfig) -> int:
    token = config.github_token_resolved
    print(f"Config OK: token={mask_token(token)} (source: {config.token_source}), data_dir={config.data_dir}")
    if not token:
        print(SETUP_HINT)
        return EXIT_SETUP_REQUIRED
    repositories = load_repository_list(Path(config.catalog.repos_path))
    adapter = GitHubAdapter(token=token, api_url=config.github.api_url, timeout=config.github.timeout)
    failed = 0
    for repo in repositories.repos:
        try:
            prs = adapter.list_open_pull_requests(repo)
        except GitPlatformError as e:
            failed += 1
            print(f"  {repo.full_name}: ERROR {e}")
            continue
        print(f"  {repo.full_name}: {len(prs)} open PRs")
    return EXIT_ERROR if failed else EXIT_OK


def _configure(config: AppConfig, args: argparse.Namespace) -> int:
    try:
        settings = UserSettings(
            github_token=args.token,
            refresh_interval=args.refresh_interval or config.refresh_interval,
        )
    except ValidationError as e:
        print(f"Invalid settings: {e}")
        return EXIT_ERROR
    if not save_user_config(user_config_path(config.data_dir), settings):
        return EXIT_ERROR
    print(f"Saved settings (token={mask_token(settings.github_token)}, refresh_interval={settings.refresh_interval})")
    return EXIT_OK


def _update_repos(config: AppConfig, args: argparse.Namespace) -> int:
    token = config.github_token_resolved
    if not token:
        print(SETUP_HINT)
        return EXIT_SETUP_REQUIRED
    if bool(args.org) != bool(args.pattern):
        print("--org and --pattern must be given together")
        return EXIT_ERROR
    if not args.org and not args.remove_archived:
        print("Nothing to do: give --org/--pattern and/or --remove-archived")
        return EXIT_ERROR
    path = Path(config.catalog.repos_path)
    adapter = GitHubAdapter(token=token, api_url=config.github.api_url, timeout=config.github.timeout)
    repo_list = load_repository_list(path)
    if args.org:
        repo_list = add_repositories_by_pattern(
            adapter,
            repo_list,
            args.org,
            args.pattern,
            color=args.color,
            refresh_interval=args.refresh_interval,
            replace=args.replace,
        )
    if args.remove_archived:
        repo_list, removed = remove_archived_repositories(adapter, repo_list)
        for repo in removed:
            print(f"Removed {repo.full_name}")
    save_repository_list(path, repo_list)
    print(f"{len(repo_list.repos)} repositories in {path}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Entry point: dispatch to the subcommand."""
    args = parse_args(argv)
    config = load_config(_resolve_config_path(args.config))
    PrWatchLogging(config.logging).setup()

    try:
        if args.subcommand == "check":
            return _check(config)
        if args.subcommand == "configure":
            return _configure(config, args)
        if args.subcommand == "update-repos":
            return _update_repos(config, args)

        dashboard = Dashboard.from_config(config)
        if args.subcommand == "once":
            return asyncio.run(_once(dashboard, args))
        if args.subcommand == "stats":
            return asyncio.run(_stats(dashboard, args.time_range))
        return asyncio.run(_run_loop(dashboard))
    except KeyboardInterrupt:
        return EXIT_OK
    except Exception as e:
        LOG.exception("Fatal error: %s", e)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
