"""Tests for BatchScheduler: concurrency, key policies and batch control."""

import asyncio
import os

import pytest

from src.api.errors import BatchAlreadyRunningError, BatchStartError, ProviderHardStopError
from src.metadata.csv_exporter import journal_path
from src.processing.batch_processing import BatchScheduler, BatchState

from conftest import FakeAnalysisClient


@pytest.fixture
def make_scheduler(settings, sink, thumbnails, recording_sleep):
    def _make(client, **kwargs):
        kwargs.setdefault("poll_interval", 0.01)
        return BatchScheduler(
            kwargs.pop("settings", settings),
            analysis_client=client,
            sink=sink,
            thumbnails=thumbnails,
            sleep=recording_sleep,
            **kwargs,
        )
    return _make


def make_images(image_factory, names):
    return [image_factory(name) for name in names]


class TestBatchRun:
    async def test_all_files_processed_within_concurrency_limit(self, make_scheduler, image_factory, media_dir):
        files = make_images(image_factory, ["red_apple.jpg", "green_pear.png", "ripe_banana.jpg"])
        client = FakeAnalysisClient(delay=0.02)
        scheduler = make_scheduler(client)

        summary = await scheduler.start(files, concurrency_limit=2)

        assert summary.state == BatchState.COMPLETED
        assert (summary.processed_count, summary.failed_count, summary.pending_count) == (3, 0, 0)
        assert summary.processed_count == summary.total_files
        assert 1 <= client.max_in_flight <= 2
        assert summary.csv_rows == 3
        with open(journal_path(str(media_dir / "success")), encoding="utf-8") as f:
            assert len(f.read().strip().splitlines()) == 4
        assert sorted(os.listdir(media_dir / "success")) == ["CSV", "green_pear.png", "red_apple.jpg", "ripe_banana.jpg"]

    async def test_bad_request_stops_batch_and_leaves_rest_pending(self, make_scheduler, image_factory, media_dir):
        files = make_images(image_factory, ["first_file.jpg", "second_file.jpg"])
        client = FakeAnalysisClient({"first_file.jpg": [ProviderHardStopError("OpenAI API 400 Bad Request - stopping process")]})
        scheduler = make_scheduler(client)

        summary = await scheduler.start(files, concurrency_limit=1)

        assert summary.state == BatchState.STOPPED
        assert "400" in summary.stop_reason
        assert (summary.processed_count, summary.failed_count, summary.pending_count) == (0, 1, 1)
        assert os.path.exists(media_dir / "failed" / "first_file.jpg")
        assert os.path.exists(media_dir / "second_file.jpg")
        assert client.calls_for("second_file.jpg") == []

    async def test_stop_leaves_remaining_files_in_place(self, make_scheduler, image_factory, media_dir):
        files = make_images(image_factory, ["one_cat.jpg", "two_cats.jpg", "three_cats.jpg"])
        holder = {}
        scheduler = make_scheduler(FakeAnalysisClient(), on_progress=lambda snap: holder["s"].stop("Stopped by user"))
        holder["s"] = scheduler

        summary = await scheduler.start(files, concurrency_limit=1)

        assert summary.state == BatchState.STOPPED
        assert summary.stop_reason == "Stopped by user"
        assert (summary.processed_count, summary.pending_count) == (1, 2)
        assert os.path.exists(media_dir / "two_cats.jpg") and os.path.exists(media_dir / "three_cats.jpg")

    async def test_stop_with_files_in_flight_finishes_them(self, make_scheduler, image_factory, media_dir):
        names = ["f_one.jpg", "f_two.jpg", "f_three.jpg", "f_four.jpg", "f_five.jpg"]
        files = make_images(image_factory, names)
        holder = {}
        scheduler = make_scheduler(FakeAnalysisClient(delay=0.05), on_progress=lambda snap: holder["s"].stop())
        holder["s"] = scheduler

        summary = await scheduler.start(files, concurrency_limit=3)

        dispatched = names[:3]
        outcomes = {item.filename: item.outcome for item in scheduler.run.items}
        assert all(outcomes[name] == "success" for name in dispatched)
        assert (summary.processed_count, summary.failed_count, summary.pending_count) == (3, 0, 2)
        success_files = sorted(n for n in os.listdir(media_dir / "success") if n != "CSV")
        with open(journal_path(str(media_dir / "success")), encoding="utf-8") as f:
            csv_names = sorted(line.split(",")[0] for line in f.read().strip().splitlines()[1:])
        assert csv_names == success_files == sorted(dispatched)
        assert os.path.exists(media_dir / "f_four.jpg") and os.path.exists(media_dir / "f_five.jpg")

    async def test_pause_holds_dispatch_until_resume(self, make_scheduler, image_factory):
        files = make_images(image_factory, ["dog_park.jpg", "dog_beach.jpg", "dog_snow.jpg"])
        client = FakeAnalysisClient()
        paused_once = []

        def on_progress(snapshot):
            if not paused_once:
                paused_once.append(snapshot.processed)
                scheduler.pause()

        scheduler = make_scheduler(client, on_progress=on_progress)

        async def controller():
            while scheduler.state != BatchState.PAUSED:
                await asyncio.sleep(0.005)
            calls_at_pause = client.call_count
            await asyncio.sleep(0.05)
            assert client.call_count == calls_at_pause == 1
            scheduler.resume()

        summary, _ = await asyncio.wait_for(
            asyncio.gather(scheduler.start(files, concurrency_limit=1), controller()), timeout=10
        )

        assert paused_once == [1]
        assert summary.state == BatchState.COMPLETED
        assert summary.processed_count == 3

    async def test_stop_while_paused_exits(self, make_scheduler, image_factory):
        files = make_images(image_factory, ["a_tree.jpg", "b_tree.jpg"])
        scheduler = make_scheduler(FakeAnalysisClient(), on_progress=lambda snap: scheduler.pause())

        async def controller():
            while scheduler.state != BatchState.PAUSED:
                await asyncio.sleep(0.005)
            scheduler.stop()

        summary, _ = await asyncio.wait_for(
            asyncio.gather(scheduler.start(files, concurrency_limit=1), controller()), timeout=10
        )

        assert summary.state == BatchState.STOPPED
        assert summary.pending_count == 1


class TestKeyPolicies:
    async def test_rotation_takes_next_key_per_call(self, make_scheduler, image_factory, settings):
        settings.api_keys = ["key-aaaaa", "key-bbbbb"]
        files = make_images(image_factory, ["w_one.jpg", "w_two.jpg", "w_three.jpg", "w_four.jpg"])
        client = FakeAnalysisClient()

        await make_scheduler(client).start(files, concurrency_limit=1)

        assert [c["credential"] for c in client.calls] == ["key-aaaaa", "key-bbbbb", "key-aaaaa", "key-bbbbb"]

    async def test_simultaneous_assigns_one_slice_per_key(self, make_scheduler, image_factory, settings):
        settings.api_keys = ["key-aaaaa", "key-bbbbb"]
        settings.key_usage_method = "simultaneous"
        files = make_images(image_factory, ["w_one.jpg", "w_two.jpg", "w_three.jpg", "w_four.jpg"])
        client = FakeAnalysisClient(delay=0.1)

        summary = await make_scheduler(client).start(files, concurrency_limit=1)

        credentials = {c["filename"]: c["credential"] for c in client.calls}
        assert credentials == {
            "w_one.jpg": "key-aaaaa",
            "w_two.jpg": "key-aaaaa",
            "w_three.jpg": "key-bbbbb",
            "w_four.jpg": "key-bbbbb",
        }
        # each slice gets its own concurrency window
        assert client.max_in_flight == 2
        assert summary.processed_count == 4


class TestStartValidation:
    async def test_no_keys(self, make_scheduler, image_factory, settings):
        settings.api_keys = ["  "]
        with pytest.raises(BatchStartError):
            await make_scheduler(FakeAnalysisClient()).start([image_factory("a_cat.jpg")])

    async def test_no_valid_files(self, make_scheduler, media_dir):
        (media_dir / "notes.txt").write_text("hello")
        with pytest.raises(BatchStartError, match="No new/valid files"):
            await make_scheduler(FakeAnalysisClient()).start([str(media_dir / "notes.txt"), str(media_dir / "gone.jpg")])

    async def test_invalid_concurrency(self, make_scheduler, image_factory):
        with pytest.raises(BatchStartError):
            await make_scheduler(FakeAnalysisClient()).start([image_factory("a_cat.jpg")], concurrency_limit=0)

    async def test_second_start_rejected_while_running(self, make_scheduler, image_factory):
        files = make_images(image_factory, ["slow_one.jpg", "slow_two.jpg"])
        scheduler = make_scheduler(FakeAnalysisClient(delay=0.05))

        first = asyncio.create_task(scheduler.start(files, concurrency_limit=1))
        while scheduler.state != BatchState.RUNNING:
            await asyncio.sleep(0.005)
        with pytest.raises(BatchAlreadyRunningError):
            await scheduler.start(files)
        summary = await first

        assert summary.processed_count == 2

    async def test_missing_files_are_skipped(self, make_scheduler, image_factory, media_dir):
        files = [image_factory("kept_file.jpg"), str(media_dir / "vanished.jpg")]

        summary = await make_scheduler(FakeAnalysisClient()).start(files)

        assert summary.total_files == 1
        assert summary.processed_count == 1


class TestRecentResults:
    async def test_bounded_when_auto_clean_up(self, make_scheduler, image_factory):
        files = make_images(image_factory, ["c_one.jpg", "c_two.jpg", "c_three.jpg"])
        scheduler = make_scheduler(FakeAnalysisClient())

        await scheduler.start(files, concurrency_limit=1)

        assert [name for name, _ in scheduler.recent_results] == ["c_two.jpg", "c_three.jpg"]

    async def test_unbounded_without_auto_clean_up(self, make_scheduler, image_factory, settings):
        settings.auto_clean_up = False
        files = make_images(image_factory, ["c_one.jpg", "c_two.jpg", "c_three.jpg"])
        scheduler = make_scheduler(FakeAnalysisClient())

        await scheduler.start(files, concurrency_limit=1)

        assert len(scheduler.recent_results) == 3


async def test_rebuild_csv_without_success_folder(make_scheduler, tmp_path):
    assert await make_scheduler(FakeAnalysisClient()).rebuild_csv(str(tmp_path)) == 0
