"""Tests for structured log context injection."""

from uuid import uuid4

from coursecast.logging import (
    add_request_context,
    bind_video_context,
    clear_request_context,
    clear_task_context,
    configure_task_logging,
    get_request_id,
    set_request_context,
)


class TestRequestContext:
    def setup_method(self):
        clear_request_context()
        clear_task_context()

    def teardown_method(self):
        clear_request_context()
        clear_task_context()

    def test_path_and_method_injected(self):
        set_request_context("req-1", path="/lessons/42/video", method="GET")

        event_dict = add_request_context(None, "info", {})

        assert event_dict["path"] == "/lessons/42/video"
        assert event_dict["method"] == "GET"
        assert event_dict["request_id"] == "req-1"
        assert get_request_id() == "req-1"

    def test_video_context_injected_as_strings(self):
        video_id = uuid4()
        bind_video_context(lesson_id=42, video_id=video_id)

        event_dict = add_request_context(None, "info", {})

        assert event_dict["lesson_id"] == "42"
        assert event_dict["video_id"] == str(video_id)

    def test_explicit_fields_win(self):
        bind_video_context(lesson_id=42)

        event_dict = add_request_context(None, "info", {"lesson_id": 7})

        assert event_dict["lesson_id"] == 7

    def test_clear_clears_all(self):
        set_request_context("req-1", user_id="u-1", path="/health", method="GET")
        bind_video_context(lesson_id=1, video_id="v-1")

        clear_request_context()
        event_dict = add_request_context(None, "info", {})

        assert event_dict == {}

    def test_none_values_not_injected(self):
        set_request_context("req-1")

        event_dict = add_request_context(None, "info", {})

        assert "path" not in event_dict
        assert "video_id" not in event_dict


class TestTaskContext:
    def setup_method(self):
        clear_request_context()

    def teardown_method(self):
        clear_task_context()

    def test_task_fields_injected(self):
        configure_task_logging(request_id="req-9", task_name="sweep_orphan_objects", task_id="t-1")

        event_dict = add_request_context(None, "info", {})

        assert event_dict["task_name"] == "sweep_orphan_objects"
        assert event_dict["task_id"] == "t-1"
        assert event_dict["request_id"] == "req-9"

    def test_clear_task_context_drops_video_fields(self):
        configure_task_logging(task_name="sync_provider_status")
        bind_video_context(video_id="v-1")

        clear_task_context()

        assert add_request_context(None, "info", {}) == {}
