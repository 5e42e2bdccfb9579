import pytest

from datadrive.errors import NotFoundError, UploadError
from datadrive.models import EditRequest, MediaAttachment
from datadrive.schemas.edit_request import EditRequestIn, FieldChange, PhotoInput
from datadrive.services import datasets as datasets_service
from datadrive.services.edit_requests import (
    change_count,
    get_edit_request,
    list_edit_requests,
    parse_statuses,
    reject_edit_request,
    submit_edit_request,
)

from conftest import BUCKET, FailingWriteStore, b64


@pytest.fixture()
def dataset(db, admin):
    return datasets_service.ingest_dataset(
        db, "people", ["name", "age"], [["John", "5"]], actor_id=admin.id
    )


def _new_row_payload(dataset, photos=0, **kw):
    return EditRequestIn(
        dataset_id=dataset.id,
        changes=[
            FieldChange(field_name="name", new_value="Ann"),
            FieldChange(field_name="age", new_value="3"),
        ],
        photos_in_app=[PhotoInput(filename=f"p{i}.png", data_base64=b64()) for i in range(photos)],
        **kw,
    )


def test_parse_statuses():
    assert parse_statuses("approved, Rejected,,approved") == ["approved", "rejected"]
    assert parse_statuses(",,,") == []
    assert parse_statuses(None) == []


def test_submit_new_row_request_stages_media(db, store, dataset, member):
    request = submit_edit_request(db, store, _new_row_payload(dataset, photos=2), member, bucket=BUCKET)

    assert request.status == "pending"
    assert request.is_edited is False
    assert request.row_id is None
    assert request.binding_state == "pending-unbound"
    assert (request.first_name, request.last_name) == ("Jane", "Doe")
    assert [d.field_name for d in request.details] == ["name", "age"]
    assert all(d.row_id is None for d in request.details)

    prefix = f"requests/{request.id}_jane_doe/"
    assert len(request.attachments) == 2
    for attachment in request.attachments:
        assert attachment.row_id is None
        assert attachment.locator.startswith(f"{BUCKET}/{prefix}")
        assert attachment.document_type == "photos"
        assert attachment.is_approved is False
    assert len(store.list(BUCKET, prefix)) == 2


def test_submit_existing_row_request_uses_row_folder(db, store, dataset, member):
    row_id = datasets_service.read_dataset_rows(db, dataset.id, 1)[0].id
    payload = EditRequestIn(
        dataset_id=dataset.id,
        row_id=row_id,
        first_name="Jo",
        last_name="Smith",
        changes=[FieldChange(field_name="age", old_value="5", new_value="6")],
        photos_for_gallery=[PhotoInput(filename="g.png", data_base64=b64(), comment="x" * 150)],
    )
    request = submit_edit_request(db, store, payload, member, bucket=BUCKET)

    assert request.is_edited is True
    assert request.row_id == row_id
    assert request.details[0].row_id == row_id
    attachment = request.attachments[0]
    assert attachment.row_id == row_id
    assert attachment.is_gallery_photo is True
    assert len(attachment.comment) == 100
    assert attachment.locator.startswith(f"{BUCKET}/requests/{row_id}/")


def test_submit_against_unknown_dataset(db, store, member):
    payload = EditRequestIn(dataset_id=404, changes=[FieldChange(field_name="a", new_value="b")])
    with pytest.raises(NotFoundError):
        submit_edit_request(db, store, payload, member, bucket=BUCKET)
    assert db.query(EditRequest).count() == 0


def test_upload_failure_abandons_request(db, tmp_path, dataset, member):
    faulty = FailingWriteStore(tmp_path / "media", fail_on=2)
    with pytest.raises(UploadError):
        submit_edit_request(db, faulty, _new_row_payload(dataset, photos=3), member, bucket=BUCKET)

    assert db.query(EditRequest).count() == 0
    assert db.query(MediaAttachment).count() == 0
    assert faulty.list(BUCKET, "requests/") == []


def test_bad_base64_abandons_request(db, store, dataset, member):
    payload = _new_row_payload(dataset)
    payload.photos_in_app = [PhotoInput(filename="p.png", data_base64="%%%")]
    with pytest.raises(UploadError):
        submit_edit_request(db, store, payload, member, bucket=BUCKET)
    assert db.query(EditRequest).count() == 0


def test_change_count_skips_void_details(db, store, dataset, member):
    payload = EditRequestIn(
        dataset_id=dataset.id,
        changes=[
            FieldChange(field_name="name", new_value="Ann"),
            FieldChange(field_name="age"),
            FieldChange(field_name="town", old_value="Oak", new_value=""),
        ],
    )
    request = submit_edit_request(db, store, payload, member, bucket=BUCKET)
    assert len(request.details) == 3
    assert change_count(request.details) == 2


def test_list_defaults_to_pending(db, store, dataset, member, other_member):
    first = submit_edit_request(db, store, _new_row_payload(dataset), member, bucket=BUCKET)
    second = submit_edit_request(db, store, _new_row_payload(dataset), other_member, bucket=BUCKET)
    reject_edit_request(db, first.id)

    assert [r.id for r in list_edit_requests(db)] == [second.id]
    # status without a user, or an unusable list, falls back to pending
    assert [r.id for r in list_edit_requests(db, "rejected")] == [second.id]
    assert [r.id for r in list_edit_requests(db, ",,,", member.id)] == [second.id]


def test_list_by_status_and_user(db, store, dataset, member, other_member):
    first = submit_edit_request(db, store, _new_row_payload(dataset), member, bucket=BUCKET)
    second = submit_edit_request(db, store, _new_row_payload(dataset), member, bucket=BUCKET)
    submit_edit_request(db, store, _new_row_payload(dataset), other_member, bucket=BUCKET)
    reject_edit_request(db, first.id)

    rejected = list_edit_requests(db, "Rejected", member.id)
    assert [r.id for r in rejected] == [first.id]

    mine = list_edit_requests(db, "pending,rejected", member.id)
    assert {r.id for r in mine} == {first.id, second.id}
    assert all(r.submitter.id == member.id for r in mine)


def test_reject(db, store, dataset, member):
    request = submit_edit_request(db, store, _new_row_payload(dataset), member, bucket=BUCKET)
    rejected = reject_edit_request(db, request.id)
    assert rejected.status == "rejected"
    assert rejected.reviewed_at is not None
    assert rejected.approved_by is None

    with pytest.raises(NotFoundError):
        reject_edit_request(db, request.id)


def test_get_edit_request(db, store, dataset, member):
    request = submit_edit_request(db, store, _new_row_payload(dataset), member, bucket=BUCKET)
    assert get_edit_request(db, request.id).id == request.id
    with pytest.raises(NotFoundError):
        get_edit_request(db, 12345)
