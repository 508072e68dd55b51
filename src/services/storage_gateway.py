"""Storage gateway for generated images.

One upload / URL-resolution interface over two backends:

- Pinata (IPFS pinning): content-addressed, public gateway URLs
- Cloudflare R2 (S3-compatible bucket storage via boto3)

The backend is picked once from configuration by
``create_storage_gateway``. When Pinata is configured it is used
exclusively; there is no per-call fallback to R2.

Outputs stored in the ``external-url`` bucket are already hosted
elsewhere; their path is the final URL and every backend short-circuits
to it.
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO
from typing import Optional
from urllib.parse import quote

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import ClientError

from utils.config import EXTERNAL_URL_BUCKET, ConfigurationError, has_r2_credentials

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageProviderError(Exception):
    """A storage provider answered with a failure status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass
class UploadResult:
    """Where an uploaded buffer landed."""

    path: str
    public_url: Optional[str] = None


class StorageGateway(ABC):
    """Uniform storage interface used by the stream consumer and result delivery."""

    name = "base"

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        # Used for direct fetches of hosted URLs
        self.client = http_client or httpx.AsyncClient(timeout=60.0, follow_redirects=True)

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        upsert: bool = False,
    ) -> UploadResult:
        """Store a buffer and return its stored path and public URL."""

    async def resolve_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        """Resolve a time-limited (or permanent) access URL for a stored object."""
        if bucket == EXTERNAL_URL_BUCKET:
            return path
        return await self._resolve_url(bucket, path, expires_in)

    def public_url(self, bucket: str, path: str) -> str:
        """Best-known public URL for a stored object, without network calls."""
        if bucket == EXTERNAL_URL_BUCKET:
            return path
        return self._public_url(bucket, path)

    async def fetch_as_base64(self, bucket: str, path: str) -> str:
        """Download a stored object and return it base64-encoded."""
        if bucket == EXTERNAL_URL_BUCKET:
            data = await self._fetch_url(path)
        else:
            data = await self._fetch_bytes(bucket, path)
        return base64.b64encode(data).decode("ascii")

    @abstractmethod
    async def _resolve_url(self, bucket: str, path: str, expires_in: int) -> str:
        ...

    @abstractmethod
    def _public_url(self, bucket: str, path: str) -> str:
        ...

    @abstractmethod
    async def _fetch_bytes(self, bucket: str, path: str) -> bytes:
        ...

    async def _fetch_url(self, url: str) -> bytes:
        response = await self.client.get(url)
        if not response.is_success:
            raise StorageProviderError(
                f"Fetch failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.content

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class PinataStorage(StorageGateway):
    """Pinata IPFS pinning backend.

    ``prefer_ipfs`` pins straight to public IPFS so gateway links work
    immediately; otherwise files go through the uploads API, which may
    keep them private until published.
    """

    name = "pinata"

    def __init__(
        self,
        jwt: str,
        gateway_base: str,
        pin_endpoint: str,
        upload_endpoint: str,
        prefer_ipfs: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(http_client)
        self.jwt = jwt
        self.gateway_base = gateway_base.rstrip("/")
        self.pin_endpoint = pin_endpoint
        self.upload_endpoint = upload_endpoint
        self.prefer_ipfs = prefer_ipfs

    def gateway_url(self, cid: str, filename: str) -> str:
        return f"{self.gateway_base}/{cid}?filename={quote(filename, safe='')}"

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        upsert: bool = False,
    ) -> UploadResult:
        # Content-addressed: bucket and upsert have no meaning here
        filename = path.rsplit("/", 1)[-1] or "file"
        files = {"file": (filename, data, content_type or DEFAULT_CONTENT_TYPE)}
        headers = {"Authorization": f"Bearer {self.jwt}"}

        if self.prefer_ipfs:
            endpoint, label = self.pin_endpoint, "Pinata pinFileToIPFS"
        else:
            endpoint, label = self.upload_endpoint, "Pinata upload"

        response = await self.client.post(endpoint, headers=headers, files=files)
        if not response.is_success:
            raise StorageProviderError(
                f"{label} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        payload = response.json()
        nested = payload.get("data") or {}
        if self.prefer_ipfs:
            cid = payload.get("IpfsHash") or payload.get("cid") or nested.get("cid")
        else:
            cid = nested.get("cid") or payload.get("cid") or payload.get("IpfsHash")
        if not cid:
            raise StorageProviderError(f"{label} did not return a CID", body=response.text)

        logger.info(f"Pinata stored {filename} as {cid}")
        return UploadResult(path=f"{cid}/{filename}", public_url=self.gateway_url(cid, filename))

    def _public_url(self, bucket: str, path: str) -> str:
        cid, _, filename = path.partition("/")
        return self.gateway_url(cid, filename or "file")

    async def _resolve_url(self, bucket: str, path: str, expires_in: int) -> str:
        # Gateway links are already public and do not expire
        return self._public_url(bucket, path)

    async def _fetch_bytes(self, bucket: str, path: str) -> bytes:
        return await self._fetch_url(self._public_url(bucket, path))


class R2Storage(StorageGateway):
    """Cloudflare R2 object storage backend.

    Uses boto3 with the S3-compatible API. boto3 is blocking, so each
    call runs in a worker thread.
    """

    name = "r2"

    def __init__(
        self,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        public_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize R2 storage.

        Args:
            account_id: Cloudflare account ID
            access_key_id: R2 API access key ID
            secret_access_key: R2 API secret access key
            public_url: Optional public URL base for files (CDN URL)
        """
        super().__init__(http_client)
        self.account_id = account_id
        self.public_base_url = public_url.rstrip("/") if public_url else None

        self._client = boto3.client(
            "s3",
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
        )

        logger.info(f"R2 storage initialized for account {account_id}")

    @staticmethod
    def _provider_error(action: str, error: ClientError) -> StorageProviderError:
        response = error.response or {}
        status_code = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        body = response.get("Error", {}).get("Message", "") or str(error)
        return StorageProviderError(
            f"R2 {action} failed: {status_code} {body}", status_code=status_code, body=body
        )

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        upsert: bool = False,
    ) -> UploadResult:
        if not upsert and await self._exists(bucket, path):
            raise StorageProviderError(
                f"R2 upload failed: 409 object {bucket}/{path} already exists",
                status_code=409,
                body="The resource already exists",
            )

        extra_args = {"ContentType": content_type or DEFAULT_CONTENT_TYPE}
        try:
            await asyncio.to_thread(
                self._client.upload_fileobj, BytesIO(data), bucket, path, ExtraArgs=extra_args
            )
        except ClientError as e:
            logger.error(f"Failed to upload {bucket}/{path}: {e}")
            raise self._provider_error("upload", e) from e

        logger.info(f"Uploaded {bucket}/{path} to R2 ({len(data)} bytes)")
        return UploadResult(path=path, public_url=self._public_url(bucket, path))

    async def _exists(self, bucket: str, path: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=bucket, Key=path)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            status_code = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if code in ("404", "NoSuchKey", "NotFound") or status_code == 404:
                return False
            raise self._provider_error("head", e) from e

    def _presigned_url(self, bucket: str, path: str, expires_in: int) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": path},
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            raise self._provider_error("presign", e) from e

    def _public_url(self, bucket: str, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{path}"
        return self._presigned_url(bucket, path, 3600)

    async def _resolve_url(self, bucket: str, path: str, expires_in: int) -> str:
        return self._presigned_url(bucket, path, expires_in)

    async def _fetch_bytes(self, bucket: str, path: str) -> bytes:
        def download() -> bytes:
            response = self._client.get_object(Bucket=bucket, Key=path)
            return response["Body"].read()

        try:
            data = await asyncio.to_thread(download)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "NoSuchKey":
                raise FileNotFoundError(f"File not found: {bucket}/{path}") from e
            raise self._provider_error("download", e) from e

        logger.debug(f"Downloaded {bucket}/{path} from R2 ({len(data)} bytes)")
        return data


class UnconfiguredStorage(StorageGateway):
    """Stand-in when no backend is configured: every stored-object call fails.

    Hosted ``external-url`` outputs still resolve, since they need no
    backend.
    """

    name = "unconfigured"

    MESSAGE = "No storage backend configured: set PINATA_JWT or the R2_* credentials"

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        upsert: bool = False,
    ) -> UploadResult:
        raise ConfigurationError(self.MESSAGE)

    def _public_url(self, bucket: str, path: str) -> str:
        raise ConfigurationError(self.MESSAGE)

    async def _resolve_url(self, bucket: str, path: str, expires_in: int) -> str:
        raise ConfigurationError(self.MESSAGE)

    async def _fetch_bytes(self, bucket: str, path: str) -> bytes:
        raise ConfigurationError(self.MESSAGE)


def create_storage_gateway(
    config: dict, http_client: Optional[httpx.AsyncClient] = None
) -> StorageGateway:
    """Pick the storage backend from configuration.

    Args:
        config: Configuration dict from ``load_config``
        http_client: Optional shared HTTP client

    Returns:
        The backend to use for the lifetime of the process
    """
    if config.get("pinata_jwt"):
        mode = "pin to IPFS" if config.get("pinata_prefer_ipfs", True) else "uploads API"
        logger.info(f"Storage backend: Pinata ({mode})")
        return PinataStorage(
            jwt=config["pinata_jwt"],
            gateway_base=config["pinata_gateway_base"],
            pin_endpoint=config["pinata_pin_endpoint"],
            upload_endpoint=config["pinata_upload_endpoint"],
            prefer_ipfs=config.get("pinata_prefer_ipfs", True),
            http_client=http_client,
        )

    if has_r2_credentials(config):
        logger.info("Storage backend: Cloudflare R2")
        return R2Storage(
            account_id=config["r2_account_id"],
            access_key_id=config["r2_access_key_id"],
            secret_access_key=config["r2_secret_access_key"],
            public_url=config.get("r2_public_url"),
            http_client=http_client,
        )

    logger.warning("No storage backend configured; uploads will fail")
    return UnconfiguredStorage(http_client)
