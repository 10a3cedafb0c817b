"""Tests for resumable uploads."""
import json
import logging
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from ytfield.services.catalog_service import YOUTUBE_API_BASE_URL
from ytfield.services.errors import (
    AmbiguousCompletion,
    ChunkLimitExceeded,
    MissingUploadUrl,
    ProviderRejected,
    TransportFailure,
    ValidationError,
)
from ytfield.services.upload_service import RESUMABLE_UPLOAD_URL, VideoMetadataDraft

MIB = 1024 * 1024
SESSION_URL = "https://www.googleapis.com/upload/youtube/v3/videos?uploadType=resumable&upload_id=session-xyz"


def _write_video(tmp_path, size, name="clip.mp4"):
    path = tmp_path / name
    pattern = bytes(range(256))
    path.write_bytes((pattern * (size // len(pattern) + 1))[:size])
    return path


def _draft(**overrides):
    values = {"title": "T", "privacy_status": "unlisted", "made_for_kids": False}
    values.update(overrides)
    return VideoMetadataDraft(**values)


def _published(seconds_ago):
    moment = datetime.now(timezone.utc) - timedelta(seconds=seconds_ago)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture
def session_negotiated(fake_http):
    fake_http.add(
        "POST",
        RESUMABLE_UPLOAD_URL,
        fake_http.json_response(200, headers={"Location": SESSION_URL}),
    )


def _chunk_calls(fake_http):
    return [request for request in fake_http.requests if request.method == "PUT"]


# =============================================================================
# Session negotiation
# =============================================================================

@pytest.mark.asyncio
async def test_create_upload_session_sends_metadata(uploads, fake_http, stored_token, session_negotiated, caplog):
    caplog.set_level(logging.INFO, logger="youtube_api_quota")
    draft = _draft(description="About T", tags=["one", "two"], category_id="10")

    upload_url = await uploads.create_upload_session(draft)

    assert upload_url == SESSION_URL
    request = fake_http.calls("POST", RESUMABLE_UPLOAD_URL)[0]
    assert request.url == RESUMABLE_UPLOAD_URL
    assert request.headers["Authorization"] == f"Bearer {stored_token['access_token']}"
    assert request.headers["Content-Type"] == "application/json; charset=UTF-8"
    assert request.headers["X-Upload-Content-Type"] == "video/*"
    assert json.loads(request.content) == {
        "snippet": {"title": "T", "categoryId": "10", "tags": ["one", "two"], "description": "About T"},
        "status": {"privacyStatus": "unlisted", "selfDeclaredMadeForKids": False},
    }
    assert [(r.resource, r.method, r.quota) for r in caplog.records if r.name == "youtube_api_quota"] == [
        ("videos", "insert_resumable", 1600)
    ]


@pytest.mark.asyncio
async def test_create_upload_session_redacts_bearer_token_in_logs(uploads, fake_http, stored_token, session_negotiated, caplog):
    caplog.set_level(logging.DEBUG, logger="ytfield.services.upload_service")

    await uploads.create_upload_session(_draft())

    assert "Bearer [REDACTED]" in caplog.text
    assert stored_token["access_token"] not in caplog.text


@pytest.mark.asyncio
async def test_invalid_privacy_status_makes_no_network_call(uploads, fake_http, stored_token):
    with pytest.raises(ValidationError, match='Invalid privacy status "friends"'):
        await uploads.create_upload_session(_draft(privacy_status="friends"))

    assert fake_http.requests == []


@pytest.mark.asyncio
async def test_upload_video_with_invalid_privacy_makes_no_network_call(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 1024)

    with pytest.raises(ValidationError):
        await uploads.upload_video(path, _draft(privacy_status="PUBLIC"))

    assert fake_http.requests == []


@pytest.mark.asyncio
async def test_session_without_location_header_is_missing_upload_url(uploads, fake_http, stored_token):
    fake_http.add("POST", RESUMABLE_UPLOAD_URL, fake_http.json_response(200, {"kind": "youtube#video"}))

    with pytest.raises(MissingUploadUrl, match='Unable to retrieve "upload URL"'):
        await uploads.create_upload_session(_draft())


@pytest.mark.asyncio
async def test_session_location_header_is_case_insensitive(uploads, fake_http, stored_token):
    fake_http.add("POST", RESUMABLE_UPLOAD_URL, fake_http.raw_response(201, headers={"location": SESSION_URL}))

    assert await uploads.create_upload_session(_draft()) == SESSION_URL


@pytest.mark.asyncio
async def test_session_rejection_surfaces_provider_message(uploads, fake_http, stored_token):
    fake_http.add(
        "POST",
        RESUMABLE_UPLOAD_URL,
        fake_http.json_response(403, {"error": {"code": 403, "message": "The user has exceeded the number of videos they may upload."}}),
    )

    with pytest.raises(ProviderRejected, match="exceeded the number of videos") as exc:
        await uploads.create_upload_session(_draft())

    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_session_rejection_without_json_reports_status(uploads, fake_http, stored_token):
    fake_http.add("POST", RESUMABLE_UPLOAD_URL, fake_http.raw_response(500, b"<html>Server Error</html>"))

    with pytest.raises(ProviderRejected, match="YouTube API returned error code: 500"):
        await uploads.create_upload_session(_draft())


@pytest.mark.asyncio
async def test_session_negotiation_timeout_is_transport_failure(uploads, fake_http, stored_token):
    fake_http.add("POST", RESUMABLE_UPLOAD_URL, httpx.ConnectTimeout("timeout"))

    with pytest.raises(TransportFailure):
        await uploads.create_upload_session(_draft())

    assert fake_http.client_kwargs[-1]["timeout"] == 30.0


# =============================================================================
# Chunk streaming
# =============================================================================

@pytest.mark.asyncio
async def test_scenario_three_chunks_then_video_id(uploads, fake_http, stored_token, session_negotiated, tmp_path):
    path = _write_video(tmp_path, 3 * MIB)
    fake_http.add(
        "PUT",
        SESSION_URL,
        fake_http.raw_response(308),
        fake_http.raw_response(308),
        fake_http.json_response(200, {"id": "abc123", "kind": "youtube#video"}),
    )

    result = await uploads.upload_video(path, _draft())

    assert result.video_id == "abc123"
    assert result.status == "completed"
    assert result.chunk_count == 3
    assert result.total_bytes == 3 * MIB

    chunks = _chunk_calls(fake_http)
    assert [c.headers["Content-Range"] for c in chunks] == [
        f"bytes 0-{MIB - 1}/{3 * MIB}",
        f"bytes {MIB}-{2 * MIB - 1}/{3 * MIB}",
        f"bytes {2 * MIB}-{3 * MIB - 1}/{3 * MIB}",
    ]
    assert all(c.headers["Content-Length"] == str(MIB) for c in chunks)
    assert all(c.headers["Content-Type"] == "video/mp4" for c in chunks)
    assert b"".join(c.content for c in chunks) == path.read_bytes()
    assert fake_http.client_kwargs[-1]["timeout"] == 60.0


@pytest.mark.parametrize("size,expected_chunks", [(1, 1), (MIB, 1), (MIB + 1, 2), (5 * MIB - 10, 5)])
@pytest.mark.asyncio
async def test_chunk_count_is_ceil_of_size_over_chunk_size(uploads, fake_http, stored_token, tmp_path, size, expected_chunks):
    path = _write_video(tmp_path, size)
    outcomes = [fake_http.raw_response(308)] * (expected_chunks - 1) + [fake_http.json_response(200, {"id": "vid"})]
    fake_http.add("PUT", SESSION_URL, *outcomes)

    assert await uploads.stream_upload(path, SESSION_URL) == "vid"
    assert len(_chunk_calls(fake_http)) == expected_chunks


@pytest.mark.asyncio
async def test_last_chunk_is_short(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, MIB + 100)
    fake_http.add("PUT", SESSION_URL, fake_http.raw_response(308), fake_http.json_response(201, {"id": "vid"}))

    await uploads.stream_upload(path, SESSION_URL)

    last = _chunk_calls(fake_http)[-1]
    assert last.headers["Content-Range"] == f"bytes {MIB}-{MIB + 99}/{MIB + 100}"
    assert last.headers["Content-Length"] == "100"


@pytest.mark.asyncio
async def test_resume_incomplete_honours_range_header(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 2 * MIB)
    half = MIB // 2
    fake_http.add(
        "PUT",
        SESSION_URL,
        fake_http.raw_response(308, headers={"Range": f"bytes=0-{half - 1}"}),
        fake_http.raw_response(308),
        fake_http.json_response(200, {"id": "vid"}),
    )

    assert await uploads.stream_upload(path, SESSION_URL) == "vid"

    assert [c.headers["Content-Range"] for c in _chunk_calls(fake_http)] == [
        f"bytes 0-{MIB - 1}/{2 * MIB}",
        f"bytes {half}-{half + MIB - 1}/{2 * MIB}",
        f"bytes {half + MIB}-{2 * MIB - 1}/{2 * MIB}",
    ]


@pytest.mark.asyncio
async def test_range_header_never_moves_backwards_or_past_the_chunk(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 2 * MIB)
    fake_http.add(
        "PUT",
        SESSION_URL,
        fake_http.raw_response(308, headers={"Range": f"bytes=0-{5 * MIB}"}),
        fake_http.json_response(200, {"id": "vid"}),
    )

    await uploads.stream_upload(path, SESSION_URL)

    assert _chunk_calls(fake_http)[1].headers["Content-Range"] == f"bytes {MIB}-{2 * MIB - 1}/{2 * MIB}"


@pytest.mark.asyncio
async def test_unparseable_final_body_is_ambiguous_completion(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 2 * MIB)
    fake_http.add("PUT", SESSION_URL, fake_http.raw_response(308), fake_http.raw_response(200, b"\x00not json"))

    with pytest.raises(AmbiguousCompletion) as exc:
        await uploads.stream_upload(path, SESSION_URL)

    assert exc.value.bytes_uploaded == exc.value.total_bytes == 2 * MIB
    assert exc.value.status_code == 200


@pytest.mark.asyncio
async def test_final_chunk_read_timeout_is_ambiguous_completion(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 2 * MIB)
    fake_http.add("PUT", SESSION_URL, fake_http.raw_response(308), httpx.ReadTimeout("timeout"))

    with pytest.raises(AmbiguousCompletion):
        await uploads.stream_upload(path, SESSION_URL)


@pytest.mark.asyncio
async def test_mid_upload_network_error_aborts_upload(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 3 * MIB)
    fake_http.add("PUT", SESSION_URL, httpx.ReadTimeout("timeout"))

    with pytest.raises(TransportFailure):
        await uploads.stream_upload(path, SESSION_URL)

    assert len(_chunk_calls(fake_http)) == 1


@pytest.mark.asyncio
async def test_chunk_rejection_is_terminal(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 3 * MIB)
    fake_http.add(
        "PUT",
        SESSION_URL,
        fake_http.raw_response(308),
        fake_http.json_response(400, {"error": {"code": 400, "message": "Invalid Content-Range"}}),
    )

    with pytest.raises(ProviderRejected, match="Upload failed with HTTP 400") as exc:
        await uploads.stream_upload(path, SESSION_URL)

    assert exc.value.status_code == 400
    assert len(_chunk_calls(fake_http)) == 2


@pytest.mark.asyncio
async def test_chunk_limit_stops_runaway_server(uploads, fake_http, stored_token, settings, tmp_path):
    settings.resumable_upload_max_chunks = 2
    path = _write_video(tmp_path, 2 * MIB)
    # Server only ever acknowledges the first byte
    fake_http.add("PUT", SESSION_URL, fake_http.raw_response(308, headers={"Range": "bytes=0-0"}))

    with pytest.raises(ChunkLimitExceeded, match="maximum chunk limit"):
        await uploads.stream_upload(path, SESSION_URL)

    assert len(_chunk_calls(fake_http)) == 2


@pytest.mark.asyncio
async def test_progress_callback_sees_monotonic_progress(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 3 * MIB)
    fake_http.add(
        "PUT",
        SESSION_URL,
        fake_http.raw_response(308),
        fake_http.raw_response(308),
        fake_http.json_response(200, {"id": "vid"}),
    )
    seen = []

    async def on_progress(uploaded, total):
        seen.append((uploaded, total))

    await uploads.stream_upload(path, SESSION_URL, progress_callback=on_progress)

    assert seen == [(MIB, 3 * MIB), (2 * MIB, 3 * MIB), (3 * MIB, 3 * MIB)]


@pytest.mark.asyncio
async def test_explicit_mime_type_is_sent(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 100, name="clip.mov")
    fake_http.add("PUT", SESSION_URL, fake_http.json_response(200, {"id": "vid"}))

    await uploads.stream_upload(path, SESSION_URL, mime_type="video/quicktime")

    assert _chunk_calls(fake_http)[0].headers["Content-Type"] == "video/quicktime"


@pytest.mark.asyncio
async def test_declared_mime_type_accepts_unknown_extension(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 100, name="clip.bin")
    fake_http.add("PUT", SESSION_URL, fake_http.json_response(200, {"id": "vid"}))

    assert await uploads.stream_upload(path, SESSION_URL, mime_type="video/mp4") == "vid"

    assert _chunk_calls(fake_http)[0].headers["Content-Type"] == "video/mp4"


@pytest.mark.asyncio
async def test_unknown_extension_without_declared_type_uses_default(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 100, name="clip.bin")
    fake_http.add("PUT", SESSION_URL, fake_http.json_response(200, {"id": "vid"}))

    await uploads.stream_upload(path, SESSION_URL)

    assert _chunk_calls(fake_http)[0].headers["Content-Type"] == "application/octet-stream"


@pytest.mark.asyncio
async def test_stream_upload_still_rejects_empty_file(uploads, fake_http, stored_token, tmp_path):
    path = tmp_path / "clip.bin"
    path.write_bytes(b"")

    with pytest.raises(ValidationError, match="Invalid file size"):
        await uploads.stream_upload(path, SESSION_URL, mime_type="video/mp4")

    assert fake_http.requests == []


@pytest.mark.asyncio
async def test_upload_video_rejects_unknown_extension(uploads, fake_http, stored_token, tmp_path):
    path = _write_video(tmp_path, 100, name="clip.bin")

    with pytest.raises(ValidationError, match="Unsupported video format"):
        await uploads.upload_video(path, _draft())

    assert fake_http.requests == []


# =============================================================================
# Ambiguous completion fallback
# =============================================================================

@pytest.mark.asyncio
async def test_scenario_unreadable_final_response_discovers_video(
    uploads, fake_http, stored_token, session_negotiated, tmp_path
):
    path = _write_video(tmp_path, 3 * MIB)
    fake_http.add(
        "PUT",
        SESSION_URL,
        fake_http.raw_response(308),
        fake_http.raw_response(308),
        fake_http.raw_response(200, b"upstream connect error"),
    )
    fake_http.add(
        "GET",
        f"{YOUTUBE_API_BASE_URL}/channels",
        fake_http.json_response(200, {"items": [{"contentDetails": {"relatedPlaylists": {"uploads": "UU123"}}}]}),
    )
    fake_http.add(
        "GET",
        f"{YOUTUBE_API_BASE_URL}/playlistItems",
        fake_http.json_response(
            200,
            {
                "items": [
                    {
                        "snippet": {
                            "title": "T",
                            "publishedAt": _published(10),
                            "resourceId": {"kind": "youtube#video", "videoId": "found123"},
                        }
                    }
                ]
            },
        ),
    )

    result = await uploads.upload_video(path, _draft(), upload_context_id="upload-1")

    assert result.video_id == "found123"
    assert result.status == "discovered"
    assert len(_chunk_calls(fake_http)) == 3


@pytest.mark.asyncio
async def test_unreadable_response_and_no_recent_upload_is_not_found(
    uploads, fake_http, stored_token, session_negotiated, tmp_path
):
    path = _write_video(tmp_path, MIB)
    fake_http.add("PUT", SESSION_URL, fake_http.raw_response(200, b""))
    fake_http.add(
        "GET",
        f"{YOUTUBE_API_BASE_URL}/channels",
        fake_http.json_response(200, {"items": [{"contentDetails": {"relatedPlaylists": {"uploads": "UU123"}}}]}),
    )
    fake_http.add("GET", f"{YOUTUBE_API_BASE_URL}/playlistItems", fake_http.json_response(200, {"items": []}))

    result = await uploads.upload_video(path, _draft())

    assert result.video_id is None
    assert result.status == "not_found"


# =============================================================================
# Inputs
# =============================================================================

def test_build_draft_uses_field_configuration(uploads):
    draft = uploads.build_draft(
        {"category_id": 10, "tags": " music, live ,, tour ", "privacy_status": "private", "made_for_kids": True},
        "My video",
        "Short description",
    )

    assert draft.title == "My video"
    assert draft.description == "Short description"
    assert draft.category_id == "10"
    assert draft.tags == ["music", "live", "tour"]
    assert draft.privacy_status == "private"
    assert draft.made_for_kids is True


def test_build_draft_falls_back_to_defaults(uploads):
    draft = uploads.build_draft({}, "My video")

    assert draft.category_id == "22"
    assert draft.privacy_status == "unlisted"
    assert draft.made_for_kids is False
    assert draft.tags == []
    assert draft.description is None
    assert "description" not in draft.to_resource()["snippet"]
    assert "tags" not in draft.to_resource()["snippet"]


def test_build_draft_requires_title(uploads):
    with pytest.raises(ValidationError, match="title is required"):
        uploads.build_draft({}, "   ")


def test_validate_file_rejects_bad_input(uploads, tmp_path):
    with pytest.raises(ValidationError, match="Invalid file data"):
        uploads.validate_file(tmp_path / "missing.mp4")

    empty = tmp_path / "empty.mp4"
    empty.write_bytes(b"")
    with pytest.raises(ValidationError, match="Invalid file size"):
        uploads.validate_file(empty)

    text = _write_video(tmp_path, 10, name="notes.txt")
    with pytest.raises(ValidationError, match="Unsupported video format"):
        uploads.validate_file(text)


def test_validate_file_resolves_mime_type(uploads, tmp_path):
    path = _write_video(tmp_path, 10, name="CLIP.MKV")

    assert uploads.validate_file(path) == (path, 10, "video/x-matroska")
