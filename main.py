"""CLI entrypoint for campaigns, runs, workers and the HTTP API."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, List

from aggregator.trends import print_analytics_summary
from utils.exceptions import ListeningEngineError
from utils.logger import configure_from_settings
from webapp.runtime import get_runtime


def _json(text: str) -> Dict[str, Any]:
    raw = str(text or "").strip()
    if not raw:
        return {}
    return json.loads(raw)


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


def _platforms(text: str) -> List[str]:
    return [item.strip() for item in str(text or "").split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Campaign listening engine CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="create a campaign")
    create.add_argument("--query", required=True)
    create.add_argument("--platforms", required=True, help="comma separated, e.g. tiktok,reddit")
    create.add_argument("--settings-json", default="{}")
    create.add_argument("--run", action="store_true", help="trigger and execute the first run")

    listing = sub.add_parser("list", help="list campaigns")
    listing.add_argument("--status", choices=["active", "paused"], default=None)

    show = sub.add_parser("show")
    show.add_argument("--campaign-id", required=True)

    status = sub.add_parser("set-status")
    status.add_argument("--campaign-id", required=True)
    status.add_argument("--status", choices=["active", "paused"], required=True)

    delete = sub.add_parser("delete")
    delete.add_argument("--campaign-id", required=True)

    delete_all = sub.add_parser("delete-all", help="delete every campaign with its runs, posts and analytics")
    delete_all.add_argument("--yes", action="store_true", help="confirm the wipe")

    run = sub.add_parser("run", help="trigger a run and execute it in this process")
    run.add_argument("--campaign-id", required=True)

    get_run = sub.add_parser("get-run")
    get_run.add_argument("--run-id", required=True)

    runs = sub.add_parser("runs")
    runs.add_argument("--campaign-id", required=True)
    runs.add_argument("--limit", type=int, default=20)
    runs.add_argument("--offset", type=int, default=0)

    posts = sub.add_parser("posts")
    posts.add_argument("--campaign-id", required=True)
    posts.add_argument("--platform", default=None)
    posts.add_argument("--run-id", default=None)
    posts.add_argument("--sentiment", choices=["positive", "neutral", "negative"], default=None)
    posts.add_argument("--sort-by", default="recent")
    posts.add_argument("--limit", type=int, default=20)
    posts.add_argument("--offset", type=int, default=0)

    stats = sub.add_parser("stats")
    stats.add_argument("--campaign-id", required=True)

    trend = sub.add_parser("trend")
    trend.add_argument("--campaign-id", required=True)

    analytics = sub.add_parser("analytics", help="latest analytics of a campaign")
    analytics.add_argument("--campaign-id", required=True)
    analytics.add_argument("--table", action="store_true", help="print a summary table instead of JSON")

    search = sub.add_parser("search", help="semantic search over analyzed posts")
    search.add_argument("--campaign-id", required=True)
    search.add_argument("--query", required=True)
    search.add_argument("--limit", type=int, default=20)
    search.add_argument("--min-similarity", type=float, default=0.3)
    search.add_argument("--platforms", default=None, help="comma separated subset of the campaign platforms")
    search.add_argument("--sentiment", choices=["positive", "neutral", "negative"], default=None)

    sweep = sub.add_parser("sweep", help="fail runs stuck in running state")
    sweep.add_argument("--cutoff-minutes", type=int, default=None)

    serve = sub.add_parser("serve", help="run the HTTP API with the worker pool")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


async def _execute_run(run_id: str) -> Dict[str, Any]:
    """Drain the queue with the worker pool, then report the persisted run."""
    runtime = get_runtime()
    runtime.workers.start()
    await runtime.workers.stop(drain=True)
    run = await runtime.service.get_run(run_id)
    return run.model_dump(mode="json")


async def _dispatch(args: argparse.Namespace) -> None:
    service = get_runtime().service

    if args.command == "create":
        campaign, run_id = await service.create_campaign(
            args.query,
            _platforms(args.platforms),
            settings=_json(args.settings_json),
            trigger_first_run=bool(args.run),
        )
        payload: Dict[str, Any] = {"campaign": campaign.model_dump(mode="json"), "run_id": run_id}
        if run_id:
            payload["run"] = await _execute_run(run_id)
        _print(payload)
        return

    if args.command == "list":
        _print({"campaigns": await service.list_campaigns(status=args.status)})
        await service.wait_background()
        return

    if args.command == "show":
        _print((await service.get_campaign(args.campaign_id)).model_dump(mode="json"))
        return

    if args.command == "set-status":
        campaign = await service.set_campaign_status(args.campaign_id, args.status)
        _print({"campaign_id": campaign.id, "status": campaign.status.value})
        return

    if args.command == "delete":
        _print({"campaign_id": args.campaign_id, "deleted": await service.delete_campaign(args.campaign_id)})
        return

    if args.command == "delete-all":
        if not args.yes:
            _print({"error": "refusing to delete all campaigns without --yes"})
            return
        _print({"deleted": await service.delete_all_campaigns()})
        return

    if args.command == "run":
        run_id = await service.trigger_run(args.campaign_id)
        _print(await _execute_run(run_id))
        return

    if args.command == "get-run":
        _print((await service.get_run(args.run_id)).model_dump(mode="json"))
        return

    if args.command == "runs":
        items, total = await service.list_runs(args.campaign_id, limit=args.limit, offset=args.offset)
        _print({"runs": [item.model_dump(mode="json") for item in items], "total": total})
        return

    if args.command == "posts":
        items, total = await service.get_posts(
            args.campaign_id,
            platform=args.platform,
            run_id=args.run_id,
            sentiment=args.sentiment,
            sort_by=args.sort_by,
            limit=args.limit,
            offset=args.offset,
        )
        _print({"posts": [item.model_dump(mode="json", exclude={"raw_data": True, "analysis": {"embedding"}}) for item in items], "total": total})
        return

    if args.command == "stats":
        _print(await service.get_campaign_stats(args.campaign_id))
        return

    if args.command == "trend":
        _print({"campaign_id": args.campaign_id, "trend": await service.get_sentiment_trend(args.campaign_id)})
        return

    if args.command == "analytics":
        analytics = await service.get_latest_analytics(args.campaign_id)
        if analytics is None:
            _print({"campaign_id": args.campaign_id, "analytics": None})
        elif args.table:
            print_analytics_summary(analytics)
        else:
            _print(analytics.model_dump(mode="json"))
        return

    if args.command == "search":
        results = await service.semantic_search(
            args.campaign_id,
            args.query,
            limit=args.limit,
            min_similarity=args.min_similarity,
            platforms=_platforms(args.platforms) if args.platforms else None,
            sentiment=args.sentiment,
        )
        _print({"query": args.query, "results": [item.to_dict() for item in results], "count": len(results)})
        return

    if args.command == "sweep":
        swept = await service.sweep_stuck_runs(args.cutoff_minutes)
        _print({"swept_run_ids": swept, "count": len(swept)})
        return


def main() -> None:
    args = build_parser().parse_args()
    configure_from_settings()

    if args.command == "serve":
        import uvicorn

        from webapp.app import app

        uvicorn.run(app, host=args.host, port=int(args.port))
        return

    try:
        asyncio.run(_dispatch(args))
    except ListeningEngineError as exc:
        _print({"error": exc.message, "details": exc.details})
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
