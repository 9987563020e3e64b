import json

import pytest

from patient_recon.services.reconcile import artifacts
from patient_recon.services.reconcile.artifacts import load_pending_batch, write_artifacts
from patient_recon.services.reconcile.errors import ArtifactError, PendingBatchError

RECORD_ID = "55555555-5555-4555-a555-555555555555"


def test_write_artifacts_writes_matched_pair(tmp_path, make_record):
    record = make_record(RECORD_ID, metadata=None)
    annotated = tmp_path / "output.csv"
    batch = tmp_path / "output.json"

    write_artifacts("a,b", ["1,2,", "3,4,abc"], [record], annotated_path=annotated, batch_path=batch)

    assert annotated.read_text(encoding="utf-8") == "a,b,update_partner_external_id\n1,2,\n3,4,abc\n"
    payload = json.loads(batch.read_text(encoding="utf-8"))
    assert payload == [
        {
            "id": RECORD_ID,
            "tenantId": record.tenant_id,
            "email": "new@example.com",
            "firstName": "New",
            "lastName": "Patient",
            "dob": "1990-02-03",
            "gender": "FEMALE",
            "phoneNumber": "+15551234567",
            "createdById": record.created_by_id,
            "ssn": None,
            "metadata": None,
            "createdAt": "2026-10-19T12:00:00Z",
            "updatedAt": "2026-10-19T12:00:00Z",
        }
    ]
    assert sorted(path.name for path in tmp_path.iterdir()) == ["output.csv", "output.json"]


def test_pending_batch_round_trips(tmp_path, make_record):
    records = [make_record(RECORD_ID), make_record("66666666-6666-4666-b666-666666666666", email="b@example.com")]
    batch = tmp_path / "output.json"
    write_artifacts("h", [], records, annotated_path=tmp_path / "output.csv", batch_path=batch)

    assert load_pending_batch(batch) == records


def test_write_artifacts_missing_directory_touches_nothing(tmp_path, make_record):
    annotated = tmp_path / "output.csv"
    annotated.write_text("previous\n", encoding="utf-8")

    with pytest.raises(ArtifactError, match="Output directory does not exist"):
        write_artifacts(
            "h",
            ["x,"],
            [make_record(RECORD_ID)],
            annotated_path=annotated,
            batch_path=tmp_path / "missing" / "output.json",
        )

    assert annotated.read_text(encoding="utf-8") == "previous\n"
    assert sorted(path.name for path in tmp_path.iterdir()) == ["output.csv"]


def test_write_artifacts_second_write_failure_discards_first(tmp_path, make_record, monkeypatch):
    def _boom(records):
        raise ArtifactError("disk full")

    monkeypatch.setattr(artifacts, "render_pending_batch", _boom)
    with pytest.raises(ArtifactError, match="disk full"):
        write_artifacts(
            "h",
            ["x,"],
            [make_record(RECORD_ID)],
            annotated_path=tmp_path / "output.csv",
            batch_path=tmp_path / "output.json",
        )
    assert list(tmp_path.iterdir()) == []


def test_load_pending_batch_missing_file(tmp_path):
    with pytest.raises(PendingBatchError, match="does not exist"):
        load_pending_batch(tmp_path / "output.json")


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("", "is empty"),
        ("   \n", "is empty"),
        ("{not json", "not valid JSON"),
        ('{"id": "x"}', "must contain a JSON list"),
        ("[]", "empty list"),
        ('[{"id": "x"}]', "entry 0 is invalid"),
    ],
)
def test_load_pending_batch_rejects_malformed(tmp_path, content, message):
    batch = tmp_path / "output.json"
    batch.write_text(content, encoding="utf-8")
    with pytest.raises(PendingBatchError, match=message):
        load_pending_batch(batch)


def test_load_pending_batch_rejects_non_utf8(tmp_path):
    batch = tmp_path / "output.json"
    batch.write_bytes('[{"firstName": "Ren\xe9e"}]'.encode("latin-1"))
    with pytest.raises(PendingBatchError, match="not valid UTF-8"):
        load_pending_batch(batch)


def test_load_pending_batch_rejects_directory(tmp_path):
    batch = tmp_path / "output.json"
    batch.mkdir()
    with pytest.raises(PendingBatchError, match="Unable to read"):
        load_pending_batch(batch)
