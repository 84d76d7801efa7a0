import io

import pytest
from beanie import PydanticObjectId
from PIL import Image

from cctv_magic.core.exceptions import UpstreamProviderError
from cctv_magic.models.credit_ledger import CreditLedgerEntry
from cctv_magic.models.user import User
from cctv_magic.models.video_job import VideoJob
from cctv_magic.services import reconciler
from cctv_magic.services.sora import ProviderError, ProviderVideo

from fakes import VIDEO_CONTENT, no_sleep

pytestmark = pytest.mark.asyncio


def _form(**overrides):
    form = {"prompt": "Santa caught on a doorbell camera", "model": "sora-2", "size": "1280x720", "duration": "8"}
    form.update(overrides)
    return form


def _png(width: int, height: int) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(out, format="PNG")
    return out.getvalue()


async def test_requires_login(client):
    r = await client.post("/api/generate", data=_form())
    assert r.status_code == 401


async def test_insufficient_credits_creates_nothing(client, fakes, make_user, login):
    user = await make_user(credits=0)
    login(client, user)

    r = await client.post("/api/generate", data=_form(model="sora-2-pro"))

    assert r.status_code == 402
    assert r.json()["error"]["details"] == {"required": 3, "available": 0}
    assert await VideoJob.count() == 0
    assert fakes.provider.created == []
    assert (await User.get(user.id)).credits == 0


async def test_invalid_duration_is_rejected_before_charging(client, fakes, make_user, login):
    user = await make_user(credits=5)
    login(client, user)

    r = await client.post("/api/generate", data=_form(duration="7"))

    assert r.status_code == 400
    assert (await User.get(user.id)).credits == 5
    assert fakes.provider.created == []


async def test_unknown_model_is_rejected(client, make_user, login):
    user = await make_user(credits=5)
    login(client, user)
    r = await client.post("/api/generate", data=_form(model="sora-9"))
    assert r.status_code == 400


async def test_processing_schedules_polling(client, fakes, make_user, login):
    user = await make_user(credits=3)
    login(client, user)

    r = await client.post("/api/generate", data=_form())

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "processing"
    assert body["videoUrl"] is None
    assert fakes.scheduler.scheduled == [body["videoId"]]
    video = await VideoJob.get(PydanticObjectId(body["videoId"]))
    assert video.status == "processing"
    assert video.job_id == "video_abc"
    assert video.credits_charged == 1
    assert (await User.get(user.id)).credits == 2
    debit = await CreditLedgerEntry.find_one(CreditLedgerEntry.reason == "generation")
    assert debit.reference_id == body["videoId"]


async def test_immediate_completion_relocates_asset(client, fakes, make_user, login):
    user = await make_user(credits=3)
    login(client, user)
    fakes.provider.create_result = ProviderVideo(id="video_done", status="completed")

    r = await client.post("/api/generate", data=_form(model="sora-2-pro"))

    body = r.json()
    key = f"{user.id}/{body['videoId']}.mp4"
    assert body["status"] == "completed"
    assert body["videoUrl"] == f"https://cdn.test/videos/{key}"
    assert fakes.storage.objects[key] == VIDEO_CONTENT
    assert fakes.storage.content_types[key] == "video/mp4"
    assert fakes.scheduler.scheduled == []
    assert (await User.get(user.id)).credits == 0


async def test_relocation_failure_keeps_proxy_url(client, fakes, make_user, login):
    user = await make_user(credits=1)
    login(client, user)
    fakes.provider.create_result = ProviderVideo(id="video_done", status="completed")
    fakes.storage.fail = True

    r = await client.post("/api/generate", data=_form())

    body = r.json()
    assert body["status"] == "completed"
    assert body["videoUrl"] == f"/api/video/{body['videoId']}/content"


async def test_provider_rejection_refunds(client, fakes, make_user, login):
    user = await make_user(credits=3)
    login(client, user)
    fakes.provider.create_result = UpstreamProviderError("Your request was blocked by moderation", upstream_status=400)

    r = await client.post("/api/generate", data=_form(model="sora-2-pro"))

    assert r.status_code == 502
    assert r.json()["error"]["message"] == "Your request was blocked by moderation"
    video = await VideoJob.find_one(VideoJob.user_id == user.id)
    assert video.status == "failed"
    assert video.error == "Your request was blocked by moderation"
    assert (await User.get(user.id)).credits == 3
    refund = await CreditLedgerEntry.find_one(CreditLedgerEntry.reason == "refund")
    assert refund.amount == 3


async def test_immediately_failed_status_refunds(client, fakes, make_user, login):
    user = await make_user(credits=1)
    login(client, user)
    fakes.provider.create_result = ProviderVideo(
        id="video_bad", status="failed", error=ProviderError(code="moderation", message="Blocked")
    )

    r = await client.post("/api/generate", data=_form())

    assert r.status_code == 502
    assert r.json()["error"]["message"] == "Blocked"
    assert (await User.get(user.id)).credits == 1


async def test_reference_image_is_resized_to_target(client, fakes, make_user, login):
    user = await make_user(credits=1)
    login(client, user)

    r = await client.post(
        "/api/generate",
        data=_form(size="720x1280"),
        files={"image": ("porch.png", _png(900, 1400), "image/png")},
    )

    assert r.status_code == 200
    sent = fakes.provider.created[0]["image"]
    assert sent.content_type == "image/jpeg"
    assert Image.open(io.BytesIO(sent.data)).size == (720, 1280)
    video = await VideoJob.get(PydanticObjectId(r.json()["videoId"]))
    assert video.image_url == "porch.png"


async def test_bad_image_costs_nothing(client, fakes, make_user, login):
    user = await make_user(credits=1)
    login(client, user)

    r = await client.post(
        "/api/generate",
        data=_form(),
        files={"image": ("notes.txt", b"definitely not an image", "text/plain")},
    )

    assert r.status_code == 400
    assert (await User.get(user.id)).credits == 1
    assert await VideoJob.count() == 0


async def test_partial_crop_fields_rejected(client, make_user, login):
    user = await make_user(credits=1)
    login(client, user)
    r = await client.post(
        "/api/generate",
        data=_form(crop_x="0", crop_y="0"),
        files={"image": ("a.png", _png(1280, 720), "image/png")},
    )
    assert r.status_code == 400


async def test_server_polling_converges(client, fakes, make_user, login):
    user = await make_user(credits=1)
    login(client, user)
    r = await client.post("/api/generate", data=_form())
    video_id = r.json()["videoId"]
    fakes.provider.statuses = [
        ProviderVideo(id="video_abc", status="in_progress", progress=40),
        ProviderVideo(id="video_abc", status="completed"),
    ]

    video = await reconciler.poll_video(
        video_id, fakes.provider, fakes.storage, max_attempts=5, interval=0.0, sleep=no_sleep
    )

    assert video.status == "completed"
    assert video.video_url.startswith("https://cdn.test/videos/")
    assert (await User.get(user.id)).credits == 0


async def test_server_polling_timeout_fails_and_refunds(client, fakes, make_user, login):
    user = await make_user(credits=1)
    login(client, user)
    r = await client.post("/api/generate", data=_form())
    video_id = r.json()["videoId"]

    video = await reconciler.poll_video(
        video_id, fakes.provider, fakes.storage, max_attempts=3, interval=0.0, sleep=no_sleep
    )

    assert video.status == "failed"
    assert video.error == reconciler.TIMEOUT_REASON
    assert len(fakes.provider.retrieved) == 3
    assert (await User.get(user.id)).credits == 1


async def test_portrait_image_defaults_size_when_omitted(client, fakes, make_user, login):
    user = await make_user(credits=1)
    login(client, user)
    form = _form()
    del form["size"]

    r = await client.post(
        "/api/generate",
        data=form,
        files={"image": ("porch.png", _png(900, 1400), "image/png")},
    )

    assert r.status_code == 200
    assert fakes.provider.created[0]["size"] == "720x1280"
    video = await VideoJob.get(PydanticObjectId(r.json()["videoId"]))
    assert video.size == "720x1280"


async def test_omitted_size_without_image_is_landscape(client, fakes, make_user, login):
    user = await make_user(credits=1)
    login(client, user)
    form = _form()
    del form["size"]

    r = await client.post("/api/generate", data=form)

    assert r.status_code == 200
    assert fakes.provider.created[0]["size"] == "1280x720"
