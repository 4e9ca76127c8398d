import threading
import time

from pastewatch.parsers.pastebin import PastebinAdapter
from pastewatch.scheduler.loop import SitePoller, Supervisor
from pastewatch.scheduler.state import ControlPlane, PollerState, RuntimeState, Snapshot
from pastewatch.utils.http import FetchFailure, RateLimited
from pastewatch.utils.proxies import ProxyPool
from pastewatch.writers import AlertSink
from pastewatch.writers.dump import DumpSink

from conftest import FakeFetcher, load_fixture, make_pipeline, rules

ARCHIVE = "https://pastebin.com/archive"
IDS = ["Xk3mP9qA", "7bTzQw2R", "Lm0Np4Vs"]


def raw(identifier):
    return f"https://pastebin.com/raw/{identifier}"


def _poller(pipeline, **kwargs):
    kwargs.setdefault("jitter_max", 0)
    kwargs.setdefault("rate_limit_pause", 0)
    return SitePoller(PastebinAdapter(), pipeline, **kwargs)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_run_once_alerts_matches_and_marks_everything_seen(recording_sink):
    fetcher = FakeFetcher(
        {
            ARCHIVE: load_fixture("pastebin"),
            raw(IDS[0]): "card: 4111111111111111 exp",
            raw(IDS[1]): "nothing interesting",
            raw(IDS[2]): "password=hunter2",
        }
    )
    pipeline = make_pipeline(
        fetcher,
        rules({"search": r"\b\d{16}\b", "description": "CC number"}, {"search": "password"}),
        sinks=[recording_sink],
    )
    metrics = _poller(pipeline).run_once()

    assert fetcher.calls == [ARCHIVE] + [raw(i) for i in IDS]
    assert metrics["listed"] == 3
    assert metrics["alerted"] == 2
    assert metrics["clean"] == 1
    assert [inc.identifier for inc in recording_sink.incidents] == [IDS[0], IDS[2]]
    first = recording_sink.incidents[0]
    assert first.url == "https://pastebin.com/Xk3mP9qA"
    assert first.matches[0].count == 1
    assert all(pipeline.seen.contains(f"pastebin:{i}") for i in IDS)


def test_seen_pastes_are_not_fetched_again(recording_sink):
    fetcher = FakeFetcher({ARCHIVE: load_fixture("pastebin"), **{raw(i): "text" for i in IDS}})
    pipeline = make_pipeline(fetcher, rules({"search": "text"}), sinks=[recording_sink])
    poller = _poller(pipeline)
    poller.run_once()
    fetcher.calls.clear()
    metrics = poller.run_once()
    assert fetcher.calls == [ARCHIVE]
    assert "alerted" not in metrics
    assert len(recording_sink.incidents) == 3


def test_near_duplicate_is_suppressed_but_seen(tmp_path, recording_sink):
    leak = "\n".join(f"user{i}@corp.example:Secr3t{i}" for i in range(60))
    keep = int(len(leak) * 0.95)
    near_copy = leak[:keep] + "#" * (len(leak) - keep)
    listing = '<td><a href="/AAAAAAAA">first</a></td><td><a href="/BBBBBBBB">second</a></td>'
    fetcher = FakeFetcher({ARCHIVE: listing, raw("AAAAAAAA"): leak, raw("BBBBBBBB"): near_copy})
    dump = DumpSink(tmp_path / "dump")
    pipeline = make_pipeline(
        fetcher,
        rules({"search": r"@corp\.example:", "description": "corp creds"}),
        sinks=[recording_sink, dump],
        threshold=0.9,
    )
    metrics = _poller(pipeline).run_once()

    assert metrics["alerted"] == 1
    assert metrics["duplicate"] == 1
    assert [inc.identifier for inc in recording_sink.incidents] == ["AAAAAAAA"]
    assert (tmp_path / "dump" / "pastebin_AAAAAAAA.raw").exists()
    assert not (tmp_path / "dump" / "pastebin_BBBBBBBB.raw").exists()
    assert pipeline.seen.contains("pastebin:AAAAAAAA")
    assert pipeline.seen.contains("pastebin:BBBBBBBB")


def test_without_threshold_duplicates_still_alert(recording_sink):
    listing = '<td><a href="/AAAAAAAA">first</a></td><td><a href="/BBBBBBBB">second</a></td>'
    fetcher = FakeFetcher({ARCHIVE: listing, raw("AAAAAAAA"): "leak leak", raw("BBBBBBBB"): "leak leak"})
    pipeline = make_pipeline(fetcher, rules({"search": "leak"}), sinks=[recording_sink])
    _poller(pipeline).run_once()
    assert len(recording_sink.incidents) == 2
    assert len(pipeline.dedup_index) == 0


def test_reload_mid_paste_keeps_old_rules_for_that_paste(recording_sink):
    old_rules = rules({"search": "alpha"})
    new_rules = rules({"search": "beta"})
    listing = '<td><a href="/AAAAAAAA">first</a></td><td><a href="/BBBBBBBB">second</a></td>'
    holder = {}

    def content_with_reload():
        # a reload lands while the first paste is being downloaded
        runtime = holder["pipeline"].runtime
        runtime.swap(Snapshot(rules=new_rules, proxies=runtime.snapshot().proxies))
        return "alpha beta"

    fetcher = FakeFetcher({ARCHIVE: listing, raw("AAAAAAAA"): content_with_reload, raw("BBBBBBBB"): "alpha beta"})
    pipeline = make_pipeline(fetcher, old_rules, sinks=[recording_sink])
    holder["pipeline"] = pipeline
    _poller(pipeline).run_once()

    patterns = [[m.pattern for m in inc.matches] for inc in recording_sink.incidents]
    assert patterns == [["alpha"], ["beta"]]


def test_rate_limited_paste_is_retried_next_cycle(recording_sink):
    listing = '<td><a href="/AAAAAAAA">first</a></td><td><a href="/BBBBBBBB">second</a></td>'
    responses = {
        ARCHIVE: listing,
        raw("AAAAAAAA"): RateLimited(url=raw("AAAAAAAA")),
        raw("BBBBBBBB"): "leak",
    }
    fetcher = FakeFetcher(responses)
    pipeline = make_pipeline(fetcher, rules({"search": "leak"}), sinks=[recording_sink])
    poller = _poller(pipeline)
    metrics = poller.run_once()
    assert metrics["rate_limited"] == 1
    assert not pipeline.seen.contains("pastebin:AAAAAAAA")
    assert pipeline.seen.contains("pastebin:BBBBBBBB")

    responses[raw("AAAAAAAA")] = "leak again"
    poller.run_once()
    assert [inc.identifier for inc in recording_sink.incidents] == ["BBBBBBBB", "AAAAAAAA"]


def test_failed_paste_fetch_moves_on(recording_sink):
    listing = '<td><a href="/AAAAAAAA">first</a></td><td><a href="/BBBBBBBB">second</a></td>'
    fetcher = FakeFetcher(
        {
            ARCHIVE: listing,
            raw("AAAAAAAA"): FetchFailure(url=raw("AAAAAAAA"), reason="timed out"),
            raw("BBBBBBBB"): "leak",
        }
    )
    pipeline = make_pipeline(fetcher, rules({"search": "leak"}), sinks=[recording_sink])
    metrics = _poller(pipeline).run_once()
    assert metrics["failed"] == 1
    assert metrics["alerted"] == 1
    assert pipeline.seen.contains("pastebin:AAAAAAAA")


def test_listing_failure_skips_processing():
    fetcher = FakeFetcher({ARCHIVE: FetchFailure(url=ARCHIVE, reason="HTTP 503")})
    pipeline = make_pipeline(fetcher, rules({"search": "leak"}))
    metrics = _poller(pipeline).run_once()
    assert metrics == {"listing_failed": 1}
    assert fetcher.calls == [ARCHIVE]


def test_sink_failure_does_not_block_other_sinks(recording_sink):
    class BrokenSink(AlertSink):
        name = "broken"

        def deliver(self, incident):
            raise OSError("smtp down")

    listing = '<td><a href="/AAAAAAAA">first</a></td>'
    fetcher = FakeFetcher({ARCHIVE: listing, raw("AAAAAAAA"): "leak"})
    pipeline = make_pipeline(fetcher, rules({"search": "leak"}), sinks=[BrokenSink(), recording_sink])
    metrics = _poller(pipeline).run_once()
    assert metrics["alerted"] == 1
    assert len(recording_sink.incidents) == 1
    assert pipeline.seen.contains("pastebin:AAAAAAAA")


def test_stop_before_start_terminates_without_fetching():
    fetcher = FakeFetcher({})
    pipeline = make_pipeline(fetcher, rules({"search": "leak"}))
    pipeline.control.request_stop()
    poller = _poller(pipeline)
    poller.start()
    poller.join(2)
    assert not poller.is_alive()
    assert poller.state is PollerState.STOPPED
    assert fetcher.calls == []


def test_stop_interrupts_interval_sleep():
    fetcher = FakeFetcher({ARCHIVE: "<html></html>"})
    pipeline = make_pipeline(fetcher, rules({"search": "leak"}))
    poller = _poller(pipeline, poll_interval=3600)
    poller.start()
    assert _wait_for(lambda: poller.state is PollerState.SLEEPING)
    pipeline.control.request_stop()
    poller.join(2)
    assert not poller.is_alive()
    assert poller.state is PollerState.STOPPED


def test_supervisor_applies_reload_and_stops(tmp_path):
    rules_path = tmp_path / "rules.yml"
    rules_path.write_text("rules:\n  - search: alpha\n", encoding="utf-8")
    proxies_path = tmp_path / "proxies.txt"
    proxies_path.write_text("10.0.0.5:3128\n", encoding="utf-8")
    runtime = RuntimeState(rules_path, proxies_path)
    runtime.load()
    old_pool = runtime.snapshot().proxies
    old_pool.discard("http://10.0.0.5:3128")

    pipeline = make_pipeline(FakeFetcher({}), rules())
    pipeline.runtime = runtime
    supervisor = Supervisor(pipeline, [], join_timeout=1)
    thread = threading.Thread(target=supervisor.run, kwargs={"tick": 0.05})
    thread.start()

    rules_path.write_text("rules:\n  - search: beta\n", encoding="utf-8")
    generation = runtime.generation
    pipeline.control.request_reload()
    assert _wait_for(lambda: runtime.generation > generation)
    pipeline.control.request_stop()
    thread.join(2)

    assert not thread.is_alive()
    snapshot = runtime.snapshot()
    assert [rule.name for rule in snapshot.rules] == ["beta"]
    assert snapshot.proxies is not old_pool
    assert snapshot.proxies.endpoints() == ["http://10.0.0.5:3128"]


def test_failed_reload_keeps_previous_rules(tmp_path):
    rules_path = tmp_path / "rules.yml"
    rules_path.write_text("rules:\n  - search: alpha\n", encoding="utf-8")
    runtime = RuntimeState(rules_path)
    runtime.load()
    rules_path.write_text("rules:\n  - search: '(broken'\n", encoding="utf-8")
    snapshot = runtime.reload()
    assert [rule.name for rule in snapshot.rules] == ["alpha"]
    assert isinstance(snapshot.proxies, ProxyPool)


def test_reload_with_undecodable_files_keeps_previous_snapshot(tmp_path):
    rules_path = tmp_path / "rules.yml"
    rules_path.write_text("rules:\n  - search: alpha\n", encoding="utf-8")
    proxies_path = tmp_path / "proxies.txt"
    proxies_path.write_text("10.0.0.5:3128\n", encoding="utf-8")
    runtime = RuntimeState(rules_path, proxies_path)
    old_pool = runtime.load().proxies

    rules_path.write_bytes(b"rules:\n  - search: \xff\xfe\n")
    proxies_path.write_bytes(b"\xff\xfe10.0.0.6:3128\n")
    snapshot = runtime.reload()
    assert [rule.name for rule in snapshot.rules] == ["alpha"]
    assert snapshot.proxies is old_pool


def test_failed_proxy_reload_keeps_previous_pool(tmp_path):
    rules_path = tmp_path / "rules.yml"
    rules_path.write_text("rules:\n  - search: alpha\n", encoding="utf-8")
    proxies_path = tmp_path / "proxies.txt"
    proxies_path.write_text("10.0.0.5:3128\n", encoding="utf-8")
    runtime = RuntimeState(rules_path, proxies_path)
    old_pool = runtime.load().proxies

    proxies_path.write_text("# emptied\n", encoding="utf-8")
    rules_path.write_text("rules:\n  - search: beta\n", encoding="utf-8")
    snapshot = runtime.reload()
    assert snapshot.proxies is old_pool
    assert [rule.name for rule in snapshot.rules] == ["beta"]

    proxies_path.unlink()
    assert runtime.reload().proxies is old_pool


def test_supervisor_keeps_running_after_failed_reload(tmp_path):
    rules_path = tmp_path / "rules.yml"
    rules_path.write_text("rules:\n  - search: alpha\n", encoding="utf-8")
    runtime = RuntimeState(rules_path)
    runtime.load()
    fetcher = FakeFetcher({ARCHIVE: "<html></html>"})
    pipeline = make_pipeline(fetcher, rules())
    pipeline.runtime = runtime
    poller = _poller(pipeline, poll_interval=3600)
    supervisor = Supervisor(pipeline, [poller], join_timeout=1)
    thread = threading.Thread(target=supervisor.run, kwargs={"tick": 0.05})
    thread.start()
    try:
        rules_path.write_bytes(b"rules:\n  - search: \xff\xfe\n")
        generation = runtime.generation
        pipeline.control.request_reload()
        assert _wait_for(lambda: runtime.generation > generation)
        time.sleep(0.1)
        assert thread.is_alive()
        assert poller.is_alive()
        assert not pipeline.control.stopped
        assert [rule.name for rule in runtime.snapshot().rules] == ["alpha"]
    finally:
        pipeline.control.request_stop()
        thread.join(2)
    assert not thread.is_alive()


def test_control_plane_wait_returns_on_stop():
    control = ControlPlane()
    timer = threading.Timer(0.05, control.request_stop)
    timer.start()
    started = time.monotonic()
    assert control.wait(10)
    assert time.monotonic() - started < 5
