"""Tests for the capture compositor: layouts, transitions, audio, quality and the recorder."""

import asyncio

import pytest

from coursecast.client import DraftMetadata, DraftStore, InvalidLayout, RecordingTooShort
from coursecast.client.compositor import (
    AudioMixer,
    BitrateController,
    Layout,
    LayoutTransition,
    LayoutType,
    MetricsSampler,
    Recorder,
    RecorderState,
    Rect,
    VideoSource,
    build_layout,
    get_preset,
    validate_layout,
)
from coursecast.client.compositor.transitions import EASINGS

SCREEN = VideoSource.SCREEN
CAMERA = VideoSource.CAMERA


class FakeEncoder:
    content_type = "video/webm"

    def __init__(self):
        self.opened = 0
        self.bitrates: list[int] = []
        self.frames: list[tuple[Layout, float]] = []
        self._current = bytearray()

    def open_segment(self, preset, bitrate_bps):
        self.opened += 1
        self.bitrates.append(bitrate_bps)
        self._current = bytearray()

    def write_frame(self, layout, audio, timestamp_s):
        self.frames.append((layout, timestamp_s))
        self._current += b"f"

    def set_bitrate(self, bitrate_bps):
        self.bitrates.append(bitrate_bps)

    def partial(self):
        return bytes(self._current)

    def close_segment(self):
        out, self._current = bytes(self._current), bytearray()
        return b"[" + out + b"]"

    def concat(self, segments):
        return b"".join(segments)


class Clock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestLayouts:
    def test_picture_in_picture_inset(self):
        layout = build_layout(LayoutType.PICTURE_IN_PICTURE, 1280, 720)

        assert layout.sources[SCREEN] == Rect(0, 0, 1280, 720)
        assert layout.sources[CAMERA] == Rect(901, 498, 359, 202, z_index=1)

    def test_pip_top_left(self):
        layout = build_layout("picture-in-picture", 1280, 720, pip_position="top-left")
        assert (layout.sources[CAMERA].x, layout.sources[CAMERA].y) == (20, 20)

    def test_pip_without_camera_degrades_to_screen(self):
        layout = build_layout(LayoutType.PICTURE_IN_PICTURE, available={SCREEN})
        assert set(layout.sources) == {SCREEN}

    def test_side_by_side_letterboxes(self):
        layout = build_layout(LayoutType.SIDE_BY_SIDE, 1280, 720)

        assert layout.sources[SCREEN] == Rect(0, 180, 640, 360)
        assert layout.sources[CAMERA] == Rect(640, 180, 640, 360)

    def test_presentation_camera_is_top_centre(self):
        camera = build_layout(LayoutType.PRESENTATION, 1280, 720).sources[CAMERA]

        assert camera.y == 20
        assert camera.x + camera.width / 2 == 640

    def test_camera_only_without_camera_is_empty(self):
        assert build_layout(LayoutType.CAMERA_ONLY, available={SCREEN}).sources == {}

    def test_every_layout_fits_small_canvas(self):
        for layout_type in LayoutType:
            validate_layout(build_layout(layout_type, 640, 360))

    @pytest.mark.parametrize(
        "rect",
        [
            Rect(-1, 0, 100, 100),
            Rect(0, 0, 0, 100),
            Rect(1200, 0, 200, 100),
            Rect(0, 0, 100, 100, z_index=-1),
        ],
    )
    def test_invalid_geometry(self, rect):
        with pytest.raises(InvalidLayout):
            validate_layout(Layout(LayoutType.SCREEN_ONLY, 1280, 720, {SCREEN: rect}))

    def test_unknown_layout_name(self):
        with pytest.raises(ValueError):
            build_layout("grid")


class TestTransitions:
    def test_midpoint_glides_between_rects(self):
        start = build_layout(LayoutType.PICTURE_IN_PICTURE)
        end = build_layout(LayoutType.SIDE_BY_SIDE)
        transition = LayoutTransition(start, end, started_at=10.0, duration_ms=300)

        frame = transition.frame(10.15)

        assert frame.sources[CAMERA].x == pytest.approx(770.5)
        assert transition.frame(10.3) is end
        assert transition.is_done(10.3)

    def test_new_source_appears_at_target(self):
        start = build_layout(LayoutType.SCREEN_ONLY)
        end = build_layout(LayoutType.PICTURE_IN_PICTURE)

        frame = LayoutTransition(start, end, started_at=0.0).frame(0.1)

        assert frame.sources[CAMERA] == end.sources[CAMERA]

    @pytest.mark.parametrize("name", sorted(EASINGS))
    def test_easings_hit_endpoints(self, name):
        assert EASINGS[name](0.0) == pytest.approx(0.0)
        assert EASINGS[name](1.0) == pytest.approx(1.0)

    def test_duration_is_bounded(self):
        layout = build_layout(LayoutType.SCREEN_ONLY)
        with pytest.raises(ValueError):
            LayoutTransition(layout, layout, started_at=0.0, duration_ms=900)


class TestAudioMixer:
    def test_mix_applies_gain_and_clips(self):
        mixer = AudioMixer()
        mixer.add_source("microphone", gain=2.0)
        mixer.add_source("system-audio", gain=0.5)

        out = mixer.mix({"microphone": [0.2, 0.8], "system-audio": [0.4, 0.4]})

        assert out == pytest.approx([0.6, 1.0])

    def test_muted_and_unknown_sources_are_silent(self):
        mixer = AudioMixer()
        mixer.add_source("microphone")
        mixer.set_muted("microphone", True)

        assert mixer.mix({"microphone": [0.5], "stranger": [0.5]}) == [0.0]

    def test_gain_bounds(self):
        mixer = AudioMixer()
        mixer.add_source("microphone")
        with pytest.raises(ValueError):
            mixer.set_gain("microphone", 2.5)

    def test_low_sample_rate_rejected(self):
        with pytest.raises(ValueError):
            AudioMixer(sample_rate=22_050)


class TestQuality:
    def test_default_preset(self):
        preset = get_preset()
        assert (preset.width, preset.height, preset.bitrate_bps) == (1280, 720, 2_500_000)

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            get_preset("4k")

    def test_sustained_drops_step_bitrate_down_once(self):
        controller = BitrateController(get_preset("720p"))
        for i in range(60):
            controller.record_frame(i * 0.1, dropped=i % 5 == 0)

        assert controller.maybe_adjust() == 1_000_000
        assert controller.maybe_adjust() is None

    def test_occasional_drops_are_tolerated(self):
        controller = BitrateController(get_preset("720p"))
        for i in range(60):
            controller.record_frame(i * 0.1, dropped=i == 30)

        assert controller.maybe_adjust() is None

    def test_auto_adjust_disabled(self):
        controller = BitrateController(get_preset("1080p"), auto_adjust=False)
        for i in range(60):
            controller.record_frame(i * 0.1, dropped=True)

        assert controller.maybe_adjust() is None


class TestMetrics:
    def test_one_sample_per_interval(self):
        samples = []
        sampler = MetricsSampler(samples.append, memory_probe=lambda: 1024)

        for i in range(11):
            sampler.record_frame(i * 0.1, render_ms=4.0, dropped=i == 5)

        assert len(samples) == 1
        assert samples[0].frames_dropped == 1
        assert samples[0].average_render_time_ms == 4.0
        assert samples[0].fps == 10.0
        assert samples[0].memory_bytes == 1024


class TestRecorder:
    @pytest.fixture
    def clock(self):
        return Clock()

    @pytest.fixture
    def encoder(self):
        return FakeEncoder()

    @pytest.mark.asyncio
    async def test_record_and_stop(self, encoder, clock):
        recorder = Recorder(encoder, clock=clock)
        recorder.start(["screen", "camera", "microphone"])
        for _ in range(3):
            clock.now += 0.5
            recorder.render_frame({"microphone": [0.1]})

        recording = await recorder.stop()

        assert recorder.state == RecorderState.STOPPED
        assert recording.blob == b"[fff]"
        assert recording.duration_s == pytest.approx(1.5)
        assert recording.segment_count == 1
        assert recording.content_type == "video/webm"

    @pytest.mark.asyncio
    async def test_source_change_rotates_segment(self, encoder, clock):
        recorder = Recorder(encoder, clock=clock)
        recorder.start(["screen"])
        recorder.render_frame()
        recorder.add_source("camera")
        clock.now += 2
        recorder.render_frame()

        recording = await recorder.stop()

        assert encoder.opened == 2
        assert recording.segment_count == 2
        assert recording.blob == b"[f][f]"
        assert set(encoder.frames[-1][0].sources) == {SCREEN, CAMERA}

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, encoder, clock):
        recorder = Recorder(encoder, clock=clock)
        recorder.start(["screen"])
        clock.now += 2

        first = await recorder.stop()
        second = await recorder.stop()

        assert first is second

    @pytest.mark.asyncio
    async def test_too_short_recording(self, encoder, clock):
        recorder = Recorder(encoder, clock=clock)
        recorder.start(["screen"])
        clock.now += 0.4

        with pytest.raises(RecordingTooShort):
            await recorder.stop()
        with pytest.raises(RecordingTooShort):
            await recorder.stop()
        assert recorder.state == RecorderState.FAILED

    def test_layout_change_does_not_restart_encoder(self, encoder, clock):
        recorder = Recorder(encoder, clock=clock)
        recorder.start(["screen", "camera"])

        recorder.set_layout(LayoutType.SIDE_BY_SIDE)
        clock.now += 0.15
        drawn = recorder.render_frame()

        assert encoder.opened == 1
        assert drawn.sources[CAMERA].x == pytest.approx(770.5)

    def test_snapshot_includes_open_segment(self, encoder, clock):
        recorder = Recorder(encoder, clock=clock)
        recorder.start(["screen"])
        recorder.render_frame()
        recorder.render_frame()

        assert recorder.snapshot() == b"ff"

    def test_unknown_source(self, encoder, clock):
        recorder = Recorder(encoder, clock=clock)
        with pytest.raises(ValueError):
            recorder.start(["webcam-2"])


class TestRecorderDrafts:
    @pytest.fixture
    def clock(self):
        return Clock()

    @pytest.mark.asyncio
    async def test_stop_flushes_the_running_autosave(self, tmp_path, clock):
        store = DraftStore(tmp_path / "drafts")
        encoder = FakeEncoder()
        recorder = Recorder(
            encoder,
            clock=clock,
            draft_store=store,
            draft_metadata=DraftMetadata(title="Week 4", lesson_id=42),
            autosave_interval_s=0.01,
        )

        recorder.start(["screen", "microphone"])
        assert store.active_draft_id == recorder.draft_id
        recorder.render_frame()
        await asyncio.sleep(0.05)
        assert store.load(recorder.draft_id).read_blob() == b"f"

        clock.now += 2
        recorder.render_frame()
        recording = await recorder.stop()

        assert store.active_draft_id is None
        assert recorder.draft.id == recorder.draft_id
        saved = store.load(recorder.draft_id)
        assert saved.read_blob() == recording.blob == b"[ff]"
        assert saved.metadata.title == "Week 4"
        assert saved.metadata.duration_s == pytest.approx(2.0)
        assert saved.metadata.layout == "picture-in-picture"

    @pytest.mark.asyncio
    async def test_too_short_recording_still_ends_autosave(self, tmp_path, clock):
        store = DraftStore(tmp_path / "drafts")
        recorder = Recorder(FakeEncoder(), clock=clock, draft_store=store, autosave_interval_s=60)
        recorder.start(["screen"])
        clock.now += 0.3

        with pytest.raises(RecordingTooShort):
            await recorder.stop()

        assert store.active_draft_id is None

    @pytest.mark.asyncio
    async def test_without_a_store_no_draft_is_kept(self, clock):
        recorder = Recorder(FakeEncoder(), clock=clock)
        recorder.start(["screen"])
        clock.now += 2

        await recorder.stop()

        assert recorder.draft_id is None
        assert recorder.draft is None
