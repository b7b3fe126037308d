from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request

from sealshare.core.config import Settings
from sealshare.core.keys import KeyProvider
from sealshare.services.blob_store import BlobStore, create_blob_store
from sealshare.services.cipher import CipherStream
from sealshare.services.download import DownloadPipeline
from sealshare.services.tokens import TokenIssuer, TokenValidator
from sealshare.services.upload import UploadPipeline
from sealshare.utils.email import SendGridNotifier, ShareNotifier


@dataclass
class ShareServices:
    """Collaborators shared by every request, built once per process."""

    keys: KeyProvider
    cipher: CipherStream
    blobs: BlobStore
    issuer: TokenIssuer
    validator: TokenValidator
    notifier: ShareNotifier
    upload: UploadPipeline
    download: DownloadPipeline


def build_services(
    settings: Settings,
    *,
    keys: KeyProvider | None = None,
    blobs: BlobStore | None = None,
    notifier: ShareNotifier | None = None,
) -> ShareServices:
    keys = keys or KeyProvider.from_env(settings.ENCRYPTION_KEY_ENV)
    blobs = blobs or create_blob_store(settings)
    notifier = notifier or SendGridNotifier()
    cipher = CipherStream(keys)
    issuer = TokenIssuer(ttl=timedelta(hours=settings.SHARE_TOKEN_TTL_HOURS))
    validator = TokenValidator()
    return ShareServices(
        keys=keys,
        cipher=cipher,
        blobs=blobs,
        issuer=issuer,
        validator=validator,
        notifier=notifier,
        upload=UploadPipeline(cipher, blobs, issuer, notifier, max_file_size=settings.MAX_FILE_SIZE),
        download=DownloadPipeline(
            cipher, blobs, validator, verify_before_stream=settings.VERIFY_BEFORE_STREAM
        ),
    )


def get_services(request: Request) -> ShareServices:
    return request.app.state.services
