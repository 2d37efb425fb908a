from types import SimpleNamespace

import pytest

from fieldphoto.services import entry_store, reconciler
from fieldphoto.services.photo_template import get_category
from fieldphoto.services.reconciler import MetaUpdate
from fieldphoto.utils.exceptions import SelectionMismatch


async def _upload(db, job_id, category_id, n, sharpness=None, **meta):
    entry = await entry_store.append(
        db,
        job_id=job_id,
        category_id=category_id,
        url=f"/storage/job-photos/{job_id}/{category_id}/{n}.jpg",
        thumb_url=f"/storage/job-photos/{job_id}/{category_id}/{n}-thumb.jpg",
        sharpness=sharpness,
    )
    await reconciler.upsert_from_entry(db, entry, **meta)
    return entry


@pytest.mark.asyncio
async def test_first_upload_creates_snapshot(db_session):
    entry = await _upload(db_session, "J1", "2", 1, sharpness=12.5)

    snap = await reconciler.get_snapshot(db_session, "J1", "2")
    assert snap is not None
    assert snap.selected_photo_id == entry.id
    assert snap.url == entry.url
    assert snap.thumb_url == entry.thumb_url
    assert snap.selection_pinned is False


@pytest.mark.asyncio
async def test_recency_wins_while_unpinned(db_session):
    await _upload(db_session, "J1", "2", 1, sharpness=500)
    latest = await _upload(db_session, "J1", "2", 2, sharpness=1)

    snap = await reconciler.get_snapshot(db_session, "J1", "2")
    assert snap.selected_photo_id == latest.id
    assert snap.thumb_url == latest.thumb_url


@pytest.mark.asyncio
async def test_pin_is_sticky_against_sharper_uploads(db_session):
    e1 = await _upload(db_session, "J1", "3", 1, sharpness=10)
    e2 = await _upload(db_session, "J1", "3", 2, sharpness=90)
    snap = await reconciler.get_snapshot(db_session, "J1", "3")
    assert snap.selected_photo_id == e2.id

    await reconciler.pin_selection(db_session, "J1", "3", e1.id)
    await _upload(db_session, "J1", "3", 3, sharpness=99)

    snap = await reconciler.get_snapshot(db_session, "J1", "3")
    assert snap.selected_photo_id == e1.id
    assert snap.url == e1.url
    assert snap.selection_pinned is True
    assert len(await entry_store.list_entries(db_session, "J1", "3")) == 3


@pytest.mark.asyncio
async def test_pin_rejects_entry_from_another_slot(db_session):
    other = await _upload(db_session, "J1", "4", 1)
    mine = await _upload(db_session, "J1", "5", 1)

    with pytest.raises(SelectionMismatch):
        await reconciler.pin_selection(db_session, "J1", "5", other.id)

    snap = await reconciler.get_snapshot(db_session, "J1", "5")
    assert snap.selected_photo_id == mine.id
    assert snap.selection_pinned is False


@pytest.mark.asyncio
async def test_metadata_merges_without_touching_selection(db_session):
    e1 = await _upload(db_session, "J2", "2", 1)
    await reconciler.pin_selection(db_session, "J2", "2", e1.id)
    await _upload(db_session, "J2", "2", 2, serial_number="SN123456", meter=12.5)

    snap = await reconciler.get_snapshot(db_session, "J2", "2")
    assert snap.selected_photo_id == e1.id
    assert snap.serial_number == "SN123456"
    assert snap.cable_meter == 12.5

    # empty serial in a later upload does not wipe the stored one
    await _upload(db_session, "J2", "2", 3, serial_number="")
    snap = await reconciler.get_snapshot(db_session, "J2", "2")
    assert snap.serial_number == "SN123456"


@pytest.mark.asyncio
async def test_apply_meta_writes_only_present_fields(db_session):
    await _upload(db_session, "J3", "11", 1, meter=4.0)

    await reconciler.apply_meta(db_session, "J3", "11", MetaUpdate(serial_number="ABC999"))

    snap = await reconciler.get_snapshot(db_session, "J3", "11")
    assert snap.serial_number == "ABC999"
    assert snap.cable_meter == 4.0


@pytest.mark.asyncio
async def test_apply_meta_mismatch_writes_nothing(db_session):
    await _upload(db_session, "J3", "2", 1)

    with pytest.raises(SelectionMismatch):
        await reconciler.apply_meta(
            db_session, "J3", "2",
            MetaUpdate(serial_number="SHOULDNOTSTICK", selected_photo_id="no-such-entry"),
        )

    snap = await reconciler.get_snapshot(db_session, "J3", "2")
    assert snap.serial_number is None


@pytest.mark.asyncio
async def test_clearing_selection_unpins(db_session):
    e1 = await _upload(db_session, "J4", "2", 1)
    await reconciler.apply_meta(db_session, "J4", "2", MetaUpdate(selected_photo_id=e1.id))
    assert (await reconciler.get_snapshot(db_session, "J4", "2")).selection_pinned is True

    await reconciler.apply_meta(db_session, "J4", "2", MetaUpdate(selected_photo_id=None))
    e2 = await _upload(db_session, "J4", "2", 2)

    snap = await reconciler.get_snapshot(db_session, "J4", "2")
    assert snap.selection_pinned is False
    assert snap.selected_photo_id == e2.id


@pytest.mark.asyncio
async def test_clear_selection_without_snapshot(db_session):
    assert await reconciler.clear_selection(db_session, "J-none", "1") is None


def test_select_best_prefers_sharpest():
    entries = [
        SimpleNamespace(id="a", sharpness=10, created_at="2024-01-01T00:00:01"),
        SimpleNamespace(id="b", sharpness=90, created_at="2024-01-01T00:00:02"),
        SimpleNamespace(id="c", sharpness=None, created_at="2024-01-01T00:00:03"),
    ]
    assert reconciler.select_best(entries) == "b"


def test_select_best_tie_goes_to_earliest():
    entries = [
        SimpleNamespace(id="late", sharpness=50, created_at="2024-01-01T00:00:05"),
        SimpleNamespace(id="early", sharpness=50, created_at="2024-01-01T00:00:01"),
    ]
    assert reconciler.select_best(entries) == "early"
    assert reconciler.select_best([]) is None


def test_completion_requires_serial_for_sn_categories():
    camera = get_category("2")
    overview = get_category("1")
    cable = get_category("11")

    assert reconciler.is_complete(camera, True, None) is False
    assert reconciler.is_complete(camera, True, "  ") is False
    assert reconciler.is_complete(camera, True, "SN0001") is True
    assert reconciler.is_complete(overview, True, None) is True
    assert reconciler.is_complete(overview, False, None) is False
    assert reconciler.is_complete(cable, True, None) is True


def test_progress_rounds_half_up():
    assert reconciler.compute_progress(18, 0)["percent"] == 0
    assert reconciler.compute_progress(18, 9)["percent"] == 50
    assert reconciler.compute_progress(8, 1)["percent"] == 13  # 12.5
    progress = reconciler.compute_progress(18, 18)
    assert progress == {"total": 18, "complete": 18, "uploaded": 18, "percent": 100}
    assert reconciler.compute_progress(0, 0)["percent"] == 0
