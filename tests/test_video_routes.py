import json
import time
from datetime import datetime, timedelta

import pytest
from beanie import PydanticObjectId

from cctv_magic.core.security import compute_webhook_signature
from cctv_magic.models.credit_ledger import CreditLedgerEntry
from cctv_magic.models.user import User
from cctv_magic.models.video_job import VideoJob
from cctv_magic.services import reconciler
from cctv_magic.services.sora import ProviderVideo

from fakes import VIDEO_CONTENT

pytestmark = pytest.mark.asyncio

WEBHOOK_SECRET = "video-webhook-secret"


async def _pending_video(user, credits_charged=1, job_id="video_abc", **fields) -> VideoJob:
    """A job whose credits were already taken (balance reflects the debit)."""
    video = VideoJob(
        user_id=user.id,
        prompt="A reindeer on the driveway",
        duration=8,
        model="sora-2",
        size="1280x720",
        credits_charged=credits_charged,
        job_id=job_id,
        **fields,
    )
    await video.insert()
    return video


def _signed(payload: dict, secret: str = WEBHOOK_SECRET, timestamp: int | None = None):
    body = json.dumps(payload).encode()
    ts = str(int(time.time()) if timestamp is None else timestamp)
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Timestamp": ts,
        "X-Webhook-Signature": "sha256=" + compute_webhook_signature(secret, ts, body),
    }
    return body, headers


async def test_status_refreshes_from_provider(client, fakes, make_user, login):
    user = await make_user()
    login(client, user)
    video = await _pending_video(user)
    fakes.provider.statuses = [ProviderVideo(id="video_abc", status="completed")]

    r = await client.get("/api/video/status", params={"videoId": str(video.id)})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "completed"
    assert body["videoUrl"] == f"https://cdn.test/videos/{user.id}/{video.id}.mp4"


async def test_status_provider_error_keeps_processing(client, fakes, make_user, login):
    from cctv_magic.core.exceptions import UpstreamProviderError

    user = await make_user()
    login(client, user)
    video = await _pending_video(user)
    fakes.provider.statuses = [UpstreamProviderError("Status check failed", upstream_status=500)]

    r = await client.get("/api/video/status", params={"videoId": str(video.id)})

    assert r.status_code == 200
    assert r.json()["status"] == "processing"
    assert (await VideoJob.get(video.id)).status == "processing"


async def test_status_of_terminal_video_skips_provider(client, fakes, make_user, login):
    user = await make_user()
    login(client, user)
    video = await _pending_video(user, status="completed", video_url="https://cdn.test/x.mp4")

    r = await client.get("/api/video/status", params={"videoId": str(video.id)})

    assert r.json()["videoUrl"] == "https://cdn.test/x.mp4"
    assert fakes.provider.retrieved == []


async def test_status_hides_other_users_videos(client, make_user, login):
    owner = await make_user(email="owner@example.com")
    intruder = await make_user(email="intruder@example.com")
    video = await _pending_video(owner)
    login(client, intruder)

    r = await client.get("/api/video/status", params={"videoId": str(video.id)})

    assert r.status_code == 404


async def test_content_proxy_streams_completed_video(client, make_user, login):
    user = await make_user()
    login(client, user)
    video = await _pending_video(user, status="completed")

    r = await client.get(f"/api/video/{video.id}/content")

    assert r.status_code == 200
    assert r.headers["content-type"] == "video/mp4"
    assert r.content == VIDEO_CONTENT


async def test_content_proxy_requires_completion(client, make_user, login):
    user = await make_user()
    login(client, user)
    video = await _pending_video(user)

    r = await client.get(f"/api/video/{video.id}/content")

    assert r.status_code == 400


async def test_content_proxy_unknown_id(client, make_user, login):
    user = await make_user()
    login(client, user)
    r = await client.get("/api/video/not-an-id/content")
    assert r.status_code == 404


async def test_webhook_completes_video_once(client, fakes, make_user):
    user = await make_user()
    video = await _pending_video(user)
    body, headers = _signed({"type": "video.completed", "data": {"id": "video_abc"}})

    r1 = await client.post("/api/webhook/video-complete", content=body, headers=headers)
    r2 = await client.post("/api/webhook/video-complete", content=body, headers=headers)

    assert r1.status_code == 200
    assert r1.json()["status"] == "completed"
    assert r2.json()["status"] == "completed"
    assert fakes.provider.downloads == ["video_abc"]
    stored = await VideoJob.get(video.id)
    assert stored.video_url == f"https://cdn.test/videos/{user.id}/{video.id}.mp4"
    assert stored.completed_at is not None


async def test_webhook_failure_refunds_once(client, make_user):
    user = await make_user(credits=0)
    video = await _pending_video(user, credits_charged=3)
    body, headers = _signed({"type": "video.failed", "data": {"id": "video_abc"}})

    await client.post("/api/webhook/video-complete", content=body, headers=headers)
    await client.post("/api/webhook/video-complete", content=body, headers=headers)

    assert (await VideoJob.get(video.id)).status == "failed"
    assert (await User.get(user.id)).credits == 3
    assert await CreditLedgerEntry.find(CreditLedgerEntry.reason == "refund").count() == 1


async def test_webhook_bad_signature_rejected(client, make_user):
    user = await make_user()
    video = await _pending_video(user)
    body, headers = _signed({"type": "video.completed", "data": {"id": "video_abc"}}, secret="wrong")

    r = await client.post("/api/webhook/video-complete", content=body, headers=headers)

    assert r.status_code == 401
    assert (await VideoJob.get(video.id)).status == "processing"


async def test_webhook_stale_timestamp_rejected(client, make_user):
    user = await make_user()
    await _pending_video(user)
    body, headers = _signed(
        {"type": "video.completed", "data": {"id": "video_abc"}}, timestamp=int(time.time()) - 600
    )
    r = await client.post("/api/webhook/video-complete", content=body, headers=headers)
    assert r.status_code == 401


async def test_webhook_unknown_job_acknowledged(client):
    body, headers = _signed({"type": "video.completed", "data": {"id": "video_missing"}})
    r = await client.post("/api/webhook/video-complete", content=body, headers=headers)
    assert r.status_code == 200
    assert r.json() == {"received": True, "message": "Unknown video"}


async def test_webhook_other_event_acknowledged(client, make_user):
    user = await make_user()
    video = await _pending_video(user)
    body, headers = _signed({"type": "video.in_progress", "data": {"id": "video_abc"}})
    r = await client.post("/api/webhook/video-complete", content=body, headers=headers)
    assert r.status_code == 200
    assert (await VideoJob.get(video.id)).status == "processing"


async def test_webhook_verification_skipped_without_secret(fakes, make_user):
    user = await make_user()
    video = await _pending_video(user)
    body = json.dumps({"type": "completed", "data": {"id": "video_abc"}}).encode()

    result = await reconciler.handle_video_webhook(
        body, None, None, fakes.provider, fakes.storage, secret=""
    )

    assert result["status"] == "completed"
    assert (await VideoJob.get(video.id)).status == "completed"


async def test_racing_failure_triggers_refund_once(fakes, make_user):
    user = await make_user(credits=0)
    video = await _pending_video(user, credits_charged=1)
    stale_copy = await VideoJob.get(video.id)

    await reconciler.fail_video(video, "provider failed")
    await reconciler.fail_video(stale_copy, reconciler.TIMEOUT_REASON)
    await reconciler.complete_video(stale_copy, fakes.provider, fakes.storage)

    stored = await VideoJob.get(video.id)
    assert stored.status == "failed"
    assert stored.error == "provider failed"
    assert (await User.get(user.id)).credits == 1
    assert fakes.provider.downloads == []


async def test_sweep_fails_stale_pending_jobs(fakes, make_user):
    user = await make_user(credits=0)
    old = await _pending_video(user, created_at=datetime.utcnow() - timedelta(hours=2))
    fresh = await _pending_video(user, job_id="video_new")

    failed = await reconciler.sweep_stale_videos(fakes.provider, fakes.storage, older_than=timedelta(minutes=30))

    assert failed == 1
    assert (await VideoJob.get(old.id)).status == "failed"
    assert (await VideoJob.get(fresh.id)).status == "processing"
    assert (await User.get(user.id)).credits == 1


async def test_sweep_completes_jobs_the_provider_finished(fakes, make_user):
    user = await make_user()
    old = await _pending_video(user, created_at=datetime.utcnow() - timedelta(hours=2))
    fakes.provider.statuses = [ProviderVideo(id="video_abc", status="completed")]

    failed = await reconciler.sweep_stale_videos(fakes.provider, fakes.storage, older_than=timedelta(minutes=30))

    assert failed == 0
    assert (await VideoJob.get(old.id)).status == "completed"


async def test_poll_video_ignores_unknown_id(fakes, db):
    assert await reconciler.poll_video(str(PydanticObjectId()), fakes.provider, fakes.storage, 3, 0.0) is None
