from io import BytesIO

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import UploadFile
from PIL import Image

from app import task_config
from app.config import settings
from app.exceptions import LimitExceeded, ValidationError
from app.utils import file_manager


# ============================================================================
# OBJECT STORAGE
# ============================================================================

@pytest.fixture
def media(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "MEDIA_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "BASE_URL", "http://cdn.test/")
    monkeypatch.setattr(settings, "MEDIA_ROOT", "media/")
    return tmp_path


def upload(name: str, content: bytes) -> UploadFile:
    return UploadFile(file=BytesIO(content), filename=name)


def png(width=4, height=3) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), "red").save(buffer, format="PNG")
    return buffer.getvalue()


class TestStorage:

    async def test_image_upload(self, media):
        stored = await file_manager.save_upload(upload("logo.PNG", png()), folder="avatars/CLI1")

        assert stored["public_id"].startswith("avatars/CLI1/")
        assert stored["public_id"].endswith(".png")
        assert stored["url"] == f"http://cdn.test/media/{stored['public_id']}"
        assert (stored["width"], stored["height"]) == (4, 3)
        assert (media / stored["public_id"]).read_bytes() == png()

    async def test_document_has_no_dimensions(self, media):
        stored = await file_manager.save_upload(upload("brief.pdf", b"%PDF-1.4"))
        assert stored["width"] is None
        assert stored["bytes"] == 8

    async def test_rejects_unknown_type(self, media):
        with pytest.raises(ValidationError):
            await file_manager.save_upload(upload("run.exe", b"MZ"))

    async def test_size_limit(self, media):
        with pytest.raises(LimitExceeded):
            await file_manager.save_upload(upload("big.txt", b"x" * (1024 * 1024 + 1)), max_size_mb=1)

    async def test_delete(self, media):
        stored = await file_manager.save_upload(upload("notes.txt", b"hi"))
        assert await file_manager.delete_upload(stored["public_id"]) is True
        assert await file_manager.delete_upload(stored["public_id"]) is False

    async def test_delete_stays_inside_media_dir(self, media, tmp_path_factory):
        outside = tmp_path_factory.mktemp("outside") / "secret.txt"
        outside.write_text("keep")
        assert await file_manager.delete_upload(f"../{outside.parent.name}/secret.txt") is False
        assert outside.exists()

    def test_public_id_from_url(self, media):
        assert file_manager.public_id_from_url("http://cdn.test/media/avatars/a.png") == "avatars/a.png"
        assert file_manager.public_id_from_url("https://elsewhere/a.png") is None
        assert file_manager.public_id_from_url("") is None


# ============================================================================
# SCHEDULER
# ============================================================================

class TestScheduler:

    def test_interval_and_cron_triggers(self):
        assert isinstance(task_config.build_trigger({"minutes": 15}), IntervalTrigger)
        assert isinstance(task_config.build_trigger({"hour": 3, "minute": 0}), CronTrigger)

    def test_offer_sweep_is_registered(self):
        job_ids = task_config.load_tasks()
        try:
            assert "offers_expire_custom_offers" in job_ids
            job = task_config.scheduler.get_job("offers_expire_custom_offers")
            assert isinstance(job.trigger, IntervalTrigger)
        finally:
            for job_id in job_ids:
                task_config.scheduler.remove_job(job_id)
