import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from services.errors import BlobExists, StorageError
from services.storage import LocalStorageGateway, S3StorageGateway, get_storage_gateway


def test_local_put_get_delete(tmp_path):
	gateway = LocalStorageGateway(tmp_path)
	gateway.put("7/1700000000000-nda.txt", b"confidential")
	assert gateway.get("7/1700000000000-nda.txt") == b"confidential"
	gateway.delete("7/1700000000000-nda.txt")
	with pytest.raises(StorageError):
		gateway.get("7/1700000000000-nda.txt")


def test_local_put_never_overwrites(tmp_path):
	gateway = LocalStorageGateway(tmp_path)
	gateway.put("7/1700000000000-nda.txt", b"first")
	with pytest.raises(BlobExists):
		gateway.put("7/1700000000000-nda.txt", b"second")
	assert gateway.get("7/1700000000000-nda.txt") == b"first"


def test_local_delete_missing_blob_fails(tmp_path):
	with pytest.raises(StorageError):
		LocalStorageGateway(tmp_path).delete("7/missing.txt")


def test_local_rejects_paths_outside_root(tmp_path):
	gateway = LocalStorageGateway(tmp_path / "blobs")
	with pytest.raises(StorageError):
		gateway.put("../escape.txt", b"x")


def test_gateway_factory_selects_backend(monkeypatch, tmp_path):
	monkeypatch.setenv("STORAGE_BACKEND", "local")
	monkeypatch.setenv("STORAGE_DIR", str(tmp_path))
	assert isinstance(get_storage_gateway(), LocalStorageGateway)


@pytest.fixture
def s3_client():
	return boto3.client(
		"s3",
		region_name="us-east-1",
		aws_access_key_id="testing",
		aws_secret_access_key="testing",
	)


def test_s3_put_get_delete(s3_client):
	gateway = S3StorageGateway("docs-bucket", client=s3_client)
	with Stubber(s3_client) as stub:
		stub.add_response(
			"put_object",
			{},
			{"Bucket": "docs-bucket", "Key": "1/2-a.pdf", "Body": b"%PDF", "ContentType": "application/pdf", "IfNoneMatch": "*"},
		)
		stub.add_response(
			"get_object",
			{"Body": StreamingBody(io.BytesIO(b"%PDF"), 4)},
			{"Bucket": "docs-bucket", "Key": "1/2-a.pdf"},
		)
		stub.add_response("delete_object", {}, {"Bucket": "docs-bucket", "Key": "1/2-a.pdf"})

		gateway.put("1/2-a.pdf", b"%PDF", "application/pdf")
		assert gateway.get("1/2-a.pdf") == b"%PDF"
		gateway.delete("1/2-a.pdf")
		stub.assert_no_pending_responses()


def test_s3_errors_become_storage_errors(s3_client):
	gateway = S3StorageGateway("docs-bucket", client=s3_client)
	with Stubber(s3_client) as stub:
		stub.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
		stub.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)
		with pytest.raises(StorageError):
			gateway.get("1/missing.pdf")
		with pytest.raises(StorageError):
			gateway.delete("1/locked.pdf")


def test_s3_put_on_taken_key_raises_blob_exists(s3_client):
	gateway = S3StorageGateway("docs-bucket", client=s3_client)
	with Stubber(s3_client) as stub:
		stub.add_client_error("put_object", service_error_code="PreconditionFailed", http_status_code=412)
		stub.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
		with pytest.raises(BlobExists):
			gateway.put("1/2-a.pdf", b"%PDF", "application/pdf")
		with pytest.raises(StorageError) as exc:
			gateway.put("1/2-a.pdf", b"%PDF", "application/pdf")
		assert not isinstance(exc.value, BlobExists)
