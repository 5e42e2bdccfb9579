import base64

import pytest

from datadrive.errors import NotFoundError, RelocationError, UploadError
from datadrive.schemas.edit_request import EditRequestIn, FieldChange, PhotoInput
from datadrive.services import datasets as datasets_service
from datadrive.services.edit_requests import submit_edit_request
from datadrive.services.media import (
    decode_base64_payload,
    discard_objects,
    media_file_name,
    media_for_request,
    media_for_row,
    open_media,
    relocate,
    review_media,
    stage_media,
)
from datadrive.utils.paths import ext_from_filename_or_mime, split_locator

from conftest import BUCKET, PNG_BYTES, FailingCopyStore, b64


def _seed_objects(store, prefix, n):
    names = [f"{prefix}/photo_{i}.png" for i in range(1, n + 1)]
    for name in names:
        store.write(BUCKET, name, PNG_BYTES)
    return names


def test_ext_from_filename_or_mime():
    assert ext_from_filename_or_mime("IMG_01.PNG", "image/jpeg") == ".png"
    assert ext_from_filename_or_mime("", "image/webp") == ".webp"
    assert ext_from_filename_or_mime(None, "application/pdf") == ".pdf"
    assert ext_from_filename_or_mime("", "") == ".jpg"


def test_media_file_names():
    ts = "20240101120000"
    assert media_file_name("Jane", "Doe", ts, 1, "photo", "IMG.PNG") == f"jane_doe_{ts}_1.png"
    assert media_file_name("Jane", "Doe", ts, 2, "gallery", "", "image/webp") == f"jane_doe_{ts}_gallery_2.webp"
    assert media_file_name("Jane", "Doe", ts, 1, "document", "scan.pdf") == f"jane_doe_{ts}_doc_1_scan.pdf"
    assert (
        media_file_name("Jane", "Doe", ts, 3, "document", "C:\\docs\\letter", "application/pdf")
        == f"jane_doe_{ts}_doc_3_letter.pdf"
    )


def test_decode_base64_payload_accepts_data_urls():
    encoded = base64.b64encode(b"hello").decode()
    assert decode_base64_payload(encoded) == b"hello"
    assert decode_base64_payload(f"data:image/png;base64,{encoded}") == b"hello"


def test_split_locator():
    assert split_locator("bucket/requests/5/a.png") == ("bucket", "requests/5/a.png")
    with pytest.raises(ValueError):
        split_locator("no-slash")


def test_local_store_refuses_paths_outside_bucket(store):
    with pytest.raises(ValueError):
        store.write(BUCKET, "../escape.txt", b"x")


def test_stage_media_writes_object(store):
    staged = stage_media(store, BUCKET, "requests/7_jane_doe", "a.png", b64(), "image/png")
    assert staged.locator == f"{BUCKET}/requests/7_jane_doe/a.png"
    assert staged.size_bytes == len(PNG_BYTES)
    assert store.read(BUCKET, staged.object_name) == PNG_BYTES


def test_stage_media_rejects_bad_base64(store):
    with pytest.raises(UploadError):
        stage_media(store, BUCKET, "requests/7_jane_doe", "a.png", "@@not-base64@@")


def test_discard_objects_ignores_missing(store):
    names = _seed_objects(store, "requests/1_a_b", 1)
    discard_objects(store, BUCKET, names + ["requests/1_a_b/missing.png"])
    assert store.list(BUCKET, "requests/1_a_b/") == []


def test_relocate_moves_everything(store):
    names = _seed_objects(store, "requests/5_jane_doe", 3)
    moved = relocate(store, BUCKET, "requests/5_jane_doe", "requests/42")

    assert moved == {n: n.replace("requests/5_jane_doe", "requests/42") for n in names}
    assert store.list(BUCKET, "requests/5_jane_doe/") == []
    assert len(store.list(BUCKET, "requests/42/")) == 3


def test_relocate_without_objects_is_a_no_op(store):
    assert relocate(store, BUCKET, "requests/9_x_y", "requests/10") == {}


@pytest.mark.parametrize("fail_on", [1, 2, 3])
def test_relocate_failure_moves_objects_back(tmp_path, fail_on):
    faulty = FailingCopyStore(tmp_path / "media", fail_on=fail_on)
    names = _seed_objects(faulty, "requests/5_jane_doe", 3)

    with pytest.raises(RelocationError) as excinfo:
        relocate(faulty, BUCKET, "requests/5_jane_doe", "requests/42")

    assert len(excinfo.value.moved) == fail_on - 1
    assert faulty.list(BUCKET, "requests/5_jane_doe/") == sorted(names)
    assert faulty.list(BUCKET, "requests/42/") == []


def _request_with_media(db, store, admin, member):
    ds = datasets_service.ingest_dataset(db, "people", ["name"], [["John"]], actor_id=admin.id)
    row_id = datasets_service.read_dataset_rows(db, ds.id, 1)[0].id
    payload = EditRequestIn(
        dataset_id=ds.id,
        row_id=row_id,
        changes=[FieldChange(field_name="name", old_value="John", new_value="Jon")],
        photos_in_app=[PhotoInput(filename="front.png", mime_type="image/png", data_base64=b64())],
        documents=[{"filename": "deed.pdf", "mime_type": "application/pdf", "data_base64": b64(b"%PDF-1.4")}],
    )
    return submit_edit_request(db, store, payload, member, bucket=BUCKET), row_id


def test_review_and_reads(db, store, admin, member):
    request, row_id = _request_with_media(db, store, admin, member)
    photos = media_for_request(db, request.id, "photos")
    docs = media_for_request(db, request.id, "document")
    assert len(photos) == 1 and len(docs) == 1
    assert docs[0].document_category == "other_document"

    # nothing public on the row before moderation
    assert media_for_row(db, row_id) == []

    updated = review_media(db, [photos[0].id], [docs[0].id], admin.id)
    assert updated == 2
    public = media_for_row(db, row_id)
    assert [m.id for m in public] == [photos[0].id]
    assert public[0].approved_by == admin.id


def test_open_media(db, store, admin, member):
    request, _ = _request_with_media(db, store, admin, member)
    photo = media_for_request(db, request.id, "photos")[0]
    doc = media_for_request(db, request.id, "document")[0]

    blob = open_media(db, store, photo.id, "photo")
    assert blob.data == PNG_BYTES
    assert blob.content_type == "image/png"
    assert blob.disposition == "inline"

    assert open_media(db, store, doc.id).data == b"%PDF-1.4"
    with pytest.raises(NotFoundError):
        open_media(db, store, doc.id, "photo")
    with pytest.raises(NotFoundError):
        open_media(db, store, 9999)


def test_open_media_with_missing_object(db, store, admin, member):
    request, _ = _request_with_media(db, store, admin, member)
    photo = media_for_request(db, request.id, "photos")[0]
    bucket, name = split_locator(photo.locator)
    store.delete(bucket, name)
    with pytest.raises(NotFoundError):
        open_media(db, store, photo.id)
