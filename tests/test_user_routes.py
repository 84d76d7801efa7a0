from datetime import datetime, timedelta

import pytest

from cctv_magic.models.predefined_prompt import PredefinedPrompt
from cctv_magic.models.transaction import Transaction
from cctv_magic.models.video_job import VideoJob
from cctv_magic.services import credits as credits_service

pytestmark = pytest.mark.asyncio


async def _video(user, status: str, minutes_ago: int) -> VideoJob:
    video = VideoJob(
        user_id=user.id,
        prompt=f"{status} video",
        duration=8,
        model="sora-2",
        size="1280x720",
        credits_charged=1,
        status=status,
        created_at=datetime.utcnow() - timedelta(minutes=minutes_ago),
    )
    await video.insert()
    return video


async def test_credits_and_ledger(client, make_user, login):
    user = await make_user(credits=5)
    login(client, user)
    await credits_service.debit(user.id, 2, reference_type="video_job", reference_id="v1")

    r = await client.get("/api/user/credits")
    assert r.json() == {"credits": 3}

    r = await client.get("/api/user/credits/ledger")
    entries = r.json()["entries"]
    assert len(entries) == 1
    assert entries[0]["amount"] == -2
    assert entries[0]["balanceAfter"] == 3


async def test_videos_filter_and_order(client, make_user, login):
    user = await make_user()
    other = await make_user(email="other@example.com")
    login(client, user)
    await _video(user, "completed", 30)
    await _video(user, "failed", 20)
    await _video(user, "processing", 10)
    await _video(other, "completed", 5)

    r = await client.get("/api/user/videos")
    assert [v["status"] for v in r.json()["videos"]] == ["processing", "failed", "completed"]

    r = await client.get("/api/user/videos", params={"status": "completed,failed", "ascending": "true"})
    assert [v["status"] for v in r.json()["videos"]] == ["completed", "failed"]

    r = await client.get("/api/user/videos", params={"status": "bogus"})
    assert r.status_code == 400


async def test_recent_videos_skip_failures(client, make_user, login):
    user = await make_user()
    login(client, user)
    for minutes in range(8):
        await _video(user, "completed", minutes + 1)
    await _video(user, "failed", 0)

    r = await client.get("/api/user/videos/recent")

    videos = r.json()["videos"]
    assert len(videos) == 6
    assert all(v["status"] == "completed" for v in videos)


async def test_transactions(client, make_user, login):
    user = await make_user()
    login(client, user)
    await Transaction(user_id=user.id, amount=1099, credits_purchased=6, stripe_session_id="cs_1").insert()

    r = await client.get("/api/user/transactions")

    rows = r.json()["transactions"]
    assert rows[0]["stripeSessionId"] == "cs_1"
    assert rows[0]["creditsPurchased"] == 6


async def test_theme_defaults_and_updates(client, make_user, login):
    user = await make_user()
    login(client, user)

    assert (await client.get("/api/user/theme")).json() == {"theme": "christmas"}

    r = await client.patch("/api/user/theme", json={"theme": "default"})
    assert r.json() == {"theme": "default"}
    assert (await client.get("/api/user/theme")).json() == {"theme": "default"}

    r = await client.patch("/api/user/theme", json={"theme": "halloween"})
    assert r.status_code == 400


async def test_prompts_active_in_display_order(client):
    await PredefinedPrompt(title="B", prompt="second", display_order=2).insert()
    await PredefinedPrompt(title="A", prompt="first", display_order=1).insert()
    await PredefinedPrompt(title="Hidden", prompt="hidden", display_order=0, is_active=False).insert()

    r = await client.get("/api/prompts")

    assert [p["title"] for p in r.json()["prompts"]] == ["A", "B"]
