from __future__ import annotations

import asyncio
import json

from aiohttp import test_utils, web

from app.client import Builder, BuilderAPIClient
from app.session import SessionState

CAPTURE = {"screenshot": "iVBORw0KGgo=", "html": "<html>...</html>", "title": "Example", "url": "https://example.com"}


def _sse(*payloads):
    frames = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        frames.append(f"data: {data}\n\n")
    return "".join(frames)


def _api(streams, capture_status=200, received=None, overrides=None):
    """
    Fake prototyper API; ``streams`` maps a path to a list of SSE bodies served in order.
    ``overrides`` replaces the handler of individual paths.
    """
    received = received if received is not None else []

    async def capture(request):
        received.append(("/capture", await request.json()))
        if capture_status != 200:
            return web.json_response({"detail": "Failed to capture the URL. Please try again."}, status=capture_status)
        return web.json_response(CAPTURE)

    def streaming(path):
        async def handler(request):
            body = await request.json()
            received.append((path, body))
            if not body.get("prompt") and not body.get("instruction"):
                return web.json_response({"detail": "missing"}, status=400)
            response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
            await response.prepare(request)
            await response.write(streams[path].pop(0).encode())
            await response.write_eof()
            return response
        return handler

    handlers = {
        "/capture": capture,
        "/generate": streaming("/generate"),
        "/iterate": streaming("/iterate"),
    }
    handlers.update(overrides or {})

    app = web.Application()
    for path, handler in handlers.items():
        app.router.add_post(path, handler)
    return app


def _run(app, scenario, timeout=180):
    async def main():
        async with test_utils.TestServer(app) as server:
            async with BuilderAPIClient(str(server.make_url("/")), timeout=timeout) as api:
                return await scenario(Builder(api))
    return asyncio.run(main())


def test_end_to_end_capture_generate_iterate() -> None:
    received = []
    streams = {
        "/generate": [
            _sse({"text": "```html\n<html><body>"}, "not json", {"text": "dark</body></html>\n```"}, "[DONE]"),
        ],
        "/iterate": [
            _sse({"text": "```html\n<html><body>darker</body></html>\n```"}, "[DONE]"),
        ],
    }

    async def scenario(builder):
        session = await builder.capture("https://example.com")
        assert session.state is SessionState.AWAITING_GOAL
        await builder.generate(session, "make it dark mode")
        assert session.state is SessionState.READY
        assert session.displayed_html == "<html><body>dark</body></html>"
        await builder.iterate(session, "darker please")
        return session

    session = _run(_api(streams, received=received), scenario)
    assert session.displayed_html == "<html><body>darker</body></html>"
    assert session.iteration_count == 1

    paths = [path for path, _ in received]
    assert paths == ["/capture", "/generate", "/iterate"]
    generate_body = received[1][1]
    assert generate_body["screenshot"] == CAPTURE["screenshot"]
    assert generate_body["prompt"] == "make it dark mode"
    assert received[2][1]["currentHtml"] == "<html><body>dark</body></html>"


def test_capture_failure_surfaces_server_message() -> None:
    async def scenario(builder):
        return await builder.capture("https://nope.invalid")

    session = _run(_api({}, capture_status=500), scenario)
    assert session.state is SessionState.IDLE
    assert session.error == "Failed to capture the URL. Please try again."


def test_stream_error_during_iteration_keeps_previous_html() -> None:
    streams = {
        "/generate": [_sse({"text": "```html\n<p>v1</p>\n```"}, "[DONE]")],
        "/iterate": [_sse({"text": "```html\n<p>half"}, {"error": "Iteration failed"})],
    }

    async def scenario(builder):
        session = await builder.capture("https://example.com")
        await builder.generate(session, "goal")
        await builder.iterate(session, "break it")
        return session

    session = _run(_api(streams), scenario)
    assert session.state is SessionState.READY
    assert session.error == "Iteration failed"
    assert session.displayed_html == "<p>v1</p>"
    assert session.iteration_count == 0


def test_stream_closed_without_terminal_event_is_an_error() -> None:
    streams = {"/generate": [_sse({"text": "```html\n<p>cut"})]}

    async def scenario(builder):
        session = await builder.capture("https://example.com")
        await builder.generate(session, "goal")
        return session

    session = _run(_api(streams), scenario)
    assert session.state is SessionState.AWAITING_GOAL
    assert session.error
    assert session.extracted_html == ""


def test_blank_instruction_is_ignored() -> None:
    streams = {"/generate": [_sse({"text": "<p>raw</p>"}, "[DONE]")]}

    async def scenario(builder):
        session = await builder.capture("https://example.com")
        await builder.generate(session, "goal")
        await builder.iterate(session, "   ")
        return session

    session = _run(_api(streams), scenario)
    assert session.state is SessionState.READY
    assert session.displayed_html == "<p>raw</p>"
    assert session.iteration_count == 0


def _stalling_api(stall_path, first_frame=None):
    """API whose ``stall_path`` sends at most one frame and then goes silent."""

    async def stall(request):
        await request.read()
        if stall_path == "/capture":
            await asyncio.sleep(1)
            return web.json_response(CAPTURE)
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        if first_frame is not None:
            await response.write(_sse(first_frame).encode())
        await asyncio.sleep(1)
        return response

    streams = {"/generate": [_sse({"text": "```html\n<p>v1</p>\n```"}, "[DONE]")]}
    return _api(streams, overrides={stall_path: stall})


def test_generation_timeout_returns_to_awaiting_goal() -> None:
    async def scenario(builder):
        session = await builder.capture("https://example.com")
        await builder.generate(session, "goal")
        return session

    session = _run(_stalling_api("/generate", {"text": "```html\n<p>x"}), scenario, timeout=0.3)
    assert session.state is SessionState.AWAITING_GOAL
    assert session.error == "Generation failed"
    assert session.extracted_html == ""


def test_iteration_timeout_keeps_previous_html() -> None:
    async def scenario(builder):
        session = await builder.capture("https://example.com")
        await builder.generate(session, "goal")
        await builder.iterate(session, "slow change")
        return session

    session = _run(_stalling_api("/iterate", {"text": "```html\n<p>half"}), scenario, timeout=0.3)
    assert session.state is SessionState.READY
    assert session.error == "Iteration failed"
    assert session.displayed_html == "<p>v1</p>"
    assert session.iteration_count == 0


def test_capture_timeout_returns_to_idle() -> None:
    async def scenario(builder):
        return await builder.capture("https://example.com")

    session = _run(_stalling_api("/capture"), scenario, timeout=0.3)
    assert session.state is SessionState.IDLE
    assert session.error == "Failed to capture the page"


def test_malformed_capture_reply_returns_to_idle() -> None:
    async def capture(request):
        return web.json_response({"unexpected": True})

    async def scenario(builder):
        return await builder.capture("https://example.com")

    session = _run(_api({}, overrides={"/capture": capture}), scenario)
    assert session.state is SessionState.IDLE
    assert session.error == "Failed to capture the page"


def test_dropped_connection_mid_stream_is_an_error() -> None:
    async def drop(request):
        await request.read()
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        await response.write(_sse({"text": "```html\n<p>cut"}).encode())
        request.transport.close()
        return response

    async def scenario(builder):
        session = await builder.capture("https://example.com")
        await builder.generate(session, "goal")
        return session

    session = _run(_api({}, overrides={"/generate": drop}), scenario)
    assert session.state is SessionState.AWAITING_GOAL
    assert session.error
    assert session.extracted_html == ""
