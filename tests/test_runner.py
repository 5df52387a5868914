import pytest

from astrowatcher.db import Database
from astrowatcher.errors import FetchExhausted, NetworkError
from astrowatcher.models import (
    PROBE_ALL_FAILED,
    PROBE_SUCCESS,
    BatchEvent,
    ListingRecord,
    ProbeResult,
)
from astrowatcher.orchestrator import RunStats
from astrowatcher.proxies import ProxyDirectory
from astrowatcher.runner import AstroWatcherRunner, build_runner
from astrowatcher.session import SessionState


def make_record(page: int, ad_number: str) -> ListingRecord:
    return ListingRecord(
        id=f"{page}_{ad_number}",
        ad_number=ad_number,
        ad_type="For Sale",
        status="Available",
        has_photo=False,
        description="Binoculars",
        price=None,
        price_text="",
        date=None,
        date_text="",
        location="Cardiff",
        is_featured=False,
        listing_url=None,
        page_number=page,
    )


class FakeProber:
    def __init__(self, working_index=1):
        self.directory = ProxyDirectory.from_templates(["", "https://p1.example/?u="])
        self.session = SessionState()
        self.working_index = working_index
        self.calls = 0

    def probe_all(self):
        self.calls += 1
        if self.working_index is None:
            return [ProbeResult(index=0, template="", status=PROBE_ALL_FAILED)]
        descriptor = self.directory[self.working_index]
        self.session.confirm(descriptor, 0.3)
        return [
            ProbeResult(
                index=self.working_index,
                template=descriptor.template,
                status=PROBE_SUCCESS,
                response_time=0.3,
                is_valid=True,
            )
        ]


class FakeOrchestrator:
    def __init__(self, pages=None, error=None):
        self.pages = pages or []
        self.error = error
        self.observer = None
        self.last_run = RunStats()
        self.seen_totals = []

    def run(self, mode, max_pages, concurrency):
        self.last_run = RunStats(mode=mode)
        records = []
        for page, page_records in enumerate(self.pages):
            records.extend(page_records)
            self.last_run.pages_processed += 1
            self.observer.on_batch(
                BatchEvent(new_records=page_records, total=len(records), page=page + 1, status="")
            )
        if self.error:
            raise self.error
        return records


class RecordingObserver:
    def __init__(self):
        self.batches = []
        self.progress = []

    def on_batch(self, event):
        self.batches.append(event)

    def on_progress(self, event):
        self.progress.append(event)


def make_runner(tmp_path, orchestrator=None, prober=None, observer=None) -> AstroWatcherRunner:
    runner = AstroWatcherRunner(
        database=Database(path=tmp_path / "astro.db"),
        prober=prober or FakeProber(),
        orchestrator=orchestrator or FakeOrchestrator(),
        observer=observer,
    )
    runner.init()
    return runner


def test_runner_initializes_schema(tmp_path):
    runner = make_runner(tmp_path)
    assert runner.database.path.exists()


def test_run_feeds_filter_progressively_and_persists(tmp_path):
    pages = [
        [make_record(0, "1"), make_record(0, "2")],
        [make_record(1, "3")],
    ]
    orchestrator = FakeOrchestrator(pages=pages)
    observer = RecordingObserver()
    runner = make_runner(tmp_path, orchestrator=orchestrator, observer=observer)

    sizes = []
    runner.listing_filter.on_change = lambda view: sizes.append(len(view))
    summary = runner.run(mode="sequential", max_pages=2)

    assert len(summary.records) == 3
    assert summary.mode == "sequential"
    assert summary.pages_processed == 2
    assert sizes[:3] == [0, 2, 3]
    assert len(runner.listing_filter.records) == 3
    assert len(observer.batches) == 2
    assert runner.database.load_listings() == summary.records

    executed_at, status, notes = list(runner.database.recent_runs())[0]
    assert executed_at == summary.executed_at
    assert status == "success"
    assert "listings=3" in notes


def test_run_failure_is_recorded_and_reraised(tmp_path):
    error = FetchExhausted("page 0", NetworkError("connection reset"))
    runner = make_runner(tmp_path, orchestrator=FakeOrchestrator(error=error))

    with pytest.raises(FetchExhausted):
        runner.run()

    _, status, notes = list(runner.database.recent_runs())[0]
    assert status == "error"
    assert notes.startswith("scrape_failed: ")
    assert "connection reset" in notes
    assert runner.database.load_listings() is None


def test_ensure_proxy_probes_then_reuses_saved_selection(tmp_path):
    runner = make_runner(tmp_path)
    selection = runner.ensure_proxy()

    assert selection.index == 1
    assert runner.prober.calls == 1

    fresh_prober = FakeProber()
    second = make_runner(tmp_path, prober=fresh_prober)
    reused = second.ensure_proxy()

    assert fresh_prober.calls == 0
    assert reused.index == 1
    assert second.session.current_index == 1


def test_ensure_proxy_force_reprobes(tmp_path):
    runner = make_runner(tmp_path)
    runner.ensure_proxy()
    runner.ensure_proxy(force=True)

    assert runner.prober.calls == 2


def test_ensure_proxy_without_working_proxy(tmp_path, caplog):
    runner = make_runner(tmp_path, prober=FakeProber(working_index=None))

    with caplog.at_level("WARNING"):
        assert runner.ensure_proxy() is None

    assert "No working proxies found" in caplog.text
    assert runner.database.load_proxy_selection() is None


def test_load_cached_populates_filter(tmp_path):
    runner = make_runner(tmp_path)
    assert runner.load_cached() is False

    runner.database.save_listings([make_record(0, "9")])

    assert runner.load_cached() is True
    assert [r.ad_number for r in runner.listing_filter.view] == ["9"]


def test_build_runner_shares_session(tmp_path):
    runner = build_runner(Database(path=tmp_path / "astro.db"))

    fetcher = runner.orchestrator.fetcher
    assert fetcher.session is runner.prober.session
    assert fetcher.http is runner.prober.http
    assert runner.prober.target_url == fetcher.build_page_url(0)
