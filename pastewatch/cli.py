from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import random
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

import yaml

from . import __version__
from .config import DEFAULT_CONFIG_PATH, ConfigError, enabled_sites, load_config, resolve_path, validate_config
from .detectors.dedup import DedupFilter, DedupIndex
from .detectors.rules import RuleLoadError, load_rules
from .detectors.rules_engine import RulesEngine
from .parsers import get_adapter
from .scheduler.loop import Pipeline, SitePoller, Supervisor
from .scheduler.state import ControlPlane, RuntimeState
from .utils.checkpoint import SeenRegistry
from .utils.http import Fetcher
from .utils.proxies import ProxyLoadError
from .writers import AlertDispatcher, AlertSink
from .writers.blog import BlogSink
from .writers.cef import CefSink
from .writers.dump import DumpSink
from .writers.log_writer import LogSink
from .writers.mail import MailSink

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "time": dt.datetime.fromtimestamp(record.created, dt.timezone.utc).isoformat(timespec="seconds"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "thread": record.threadName,
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(log_dir: Path | None, level: str = "INFO") -> None:
    formatter = JsonFormatter()
    handlers: List[logging.Handler] = []
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "pastewatch.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.handlers = []
    for handler in handlers:
        root.addHandler(handler)


def build_sinks(config: Dict) -> List[AlertSink]:
    sinks_cfg = config.get("sinks", {}) or {}
    sinks: List[AlertSink] = []
    if (sinks_cfg.get("log") or {}).get("enabled", True):
        sinks.append(LogSink())
    if (sinks_cfg.get("cef") or {}).get("enabled"):
        sinks.append(CefSink.from_config(sinks_cfg["cef"]))
    if (sinks_cfg.get("mail") or {}).get("enabled"):
        sinks.append(MailSink.from_config(sinks_cfg["mail"]))
    if (sinks_cfg.get("dump") or {}).get("enabled"):
        dump_cfg = dict(sinks_cfg["dump"])
        dump_cfg["directory"] = str(resolve_path(config, dump_cfg["directory"]))
        try:
            sinks.append(DumpSink.from_config(dump_cfg))
        except (OSError, ValueError) as exc:
            raise ConfigError(str(exc)) from exc
    if (sinks_cfg.get("blog") or {}).get("enabled"):
        sinks.append(BlogSink.from_config(sinks_cfg["blog"]))
    return sinks


def build_pipeline(config: Dict, control: ControlPlane | None = None) -> Pipeline:
    """Wire the shared collaborators. Raises on any startup configuration problem."""
    validate_config(config)
    runtime = RuntimeState(
        rules_path=resolve_path(config, config["rules_path"]),
        proxies_path=resolve_path(config, config.get("proxies_path")),
        ignore_case=bool(config.get("ignore_case")),
    )
    runtime.load()
    sinks = build_sinks(config)
    dedup = DedupFilter.from_config(config)
    dedup_index = DedupIndex(int(config["dedup"]["max_samples"]))
    if dedup.enabled:
        for sink in sinks:
            if isinstance(sink, DumpSink):
                seeded = dedup_index.seed(sink.recent_samples(dedup_index.max_samples))
                logging.getLogger(__name__).info("dedup-index-seeded", extra={"samples": seeded})
    seen = SeenRegistry(int(config["max_pasties"]))
    checkpoint_path = resolve_path(config, config.get("checkpoint_path"))
    if checkpoint_path is not None:
        seen.load(checkpoint_path)
    return Pipeline(
        runtime=runtime,
        fetcher=Fetcher.from_config(config),
        engine=RulesEngine(config.get("sample_size")),
        dedup=dedup,
        dedup_index=dedup_index,
        dispatcher=AlertDispatcher(sinks),
        seen=seen,
        control=control or ControlPlane(),
        checkpoint_path=checkpoint_path,
    )


def build_pollers(config: Dict, pipeline: Pipeline, sites: Iterable[str]) -> List[SitePoller]:
    fetch_cfg = config.get("fetch", {}) or {}
    pollers: List[SitePoller] = []
    for site in sites:
        site_cfg = (config.get("sites", {}) or {}).get(site) or {}
        pollers.append(
            SitePoller(
                get_adapter(site),
                pipeline,
                poll_interval=float(site_cfg.get("poll_interval_seconds", 60)),
                rate_limit_pause=float(fetch_cfg.get("rate_limit_pause_seconds", 5)),
                jitter_max=float(fetch_cfg.get("jitter_max_seconds", 5)),
                rng=random.Random(),
            )
        )
    return pollers


def _select_sites(config: Dict, requested: str | None) -> List[str]:
    configured = enabled_sites(config)
    if not requested or requested == "all":
        return configured
    selected = [site.strip() for site in requested.split(",") if site.strip()]
    invalid = sorted(set(selected) - set(configured))
    if invalid:
        raise ConfigError(f"Sites not enabled in config: {', '.join(invalid)}")
    return selected


def run_command(args: argparse.Namespace) -> None:
    try:
        config = load_config(args.config)
        level = "DEBUG" if args.debug else config.get("log_level", "INFO")
        setup_logging(resolve_path(config, config.get("logs_dir")), level)
        sites = _select_sites(config, args.sites)
        pipeline = build_pipeline(config)
        pollers = build_pollers(config, pipeline, sites)
    except (ConfigError, RuleLoadError, ProxyLoadError, KeyError) as exc:
        raise SystemExit(f"pastewatch: {exc}") from exc

    logger = logging.getLogger(__name__)
    logger.info("pastewatch-starting", extra={"version": __version__, "sites": sites, "once": args.once})
    if args.once:
        for poller in pollers:
            poller.run_once()
        pipeline.save_checkpoint()
        pipeline.dispatcher.close()
        return
    pipeline.control.install_signal_handlers()
    Supervisor(pipeline, pollers).run()


def validate_command(args: argparse.Namespace) -> None:
    try:
        config = validate_config(load_config(args.config))
        rule_set = load_rules(resolve_path(config, config["rules_path"]), bool(config.get("ignore_case")))
    except (ConfigError, RuleLoadError) as exc:
        raise SystemExit(f"pastewatch: {exc}") from exc
    printable = {key: value for key, value in config.items() if key != "config_dir"}
    print(yaml.safe_dump(printable, sort_keys=False))
    print(f"# {len(rule_set)} rules loaded from {rule_set.source}")


def check_command(args: argparse.Namespace) -> None:
    try:
        config = load_config(args.config)
        rule_set = load_rules(resolve_path(config, config["rules_path"]), bool(config.get("ignore_case")))
        content = Path(args.file).read_text(encoding="utf-8", errors="replace")
    except (ConfigError, RuleLoadError, OSError) as exc:
        raise SystemExit(f"pastewatch: {exc}") from exc
    engine = RulesEngine(config.get("sample_size"))
    matches = engine.evaluate(content, rule_set)
    if not matches:
        print("No rule fired")
        return
    for match in matches:
        label = f" [{match.description}]" if match.description else ""
        print(f"{match.pattern}{label}: {match.count} time(s)")
        if match.sample:
            print(f"  sample: {match.sample}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Paste site leak monitor")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_config(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="YAML configuration file")

    run_parser = subparsers.add_parser("run", help="Poll the configured sites")
    add_config(run_parser)
    run_parser.add_argument("--sites", default="all", help="Comma separated list of sites or 'all'")
    run_parser.add_argument("--once", action="store_true", help="Process one listing per site and exit")
    run_parser.add_argument("--debug", action="store_true", help="Verbose logging")
    run_parser.set_defaults(func=run_command)

    validate_parser = subparsers.add_parser("validate", help="Validate and print the configuration")
    add_config(validate_parser)
    validate_parser.set_defaults(func=validate_command)

    check_parser = subparsers.add_parser("check", help="Evaluate the rules against a local file")
    add_config(check_parser)
    check_parser.add_argument("file", help="Text file to test")
    check_parser.set_defaults(func=check_command)

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
